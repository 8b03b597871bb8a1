from social_chat.client.viewport import PIN_THRESHOLD, Viewport


def test_follows_new_content_while_pinned():
    viewport = Viewport(view_height=100, content_height=300)
    assert viewport.offset == 200
    assert viewport.content_changed(350) is True
    assert viewport.offset == 250
    assert not viewport.show_jump_button


def test_keeps_position_when_scrolled_up():
    viewport = Viewport(view_height=100, content_height=300)
    viewport.scroll_to(50)
    assert not viewport.pinned
    assert viewport.show_jump_button
    assert viewport.content_changed(400) is False
    assert viewport.offset == 50


def test_near_bottom_counts_as_pinned():
    viewport = Viewport(view_height=100, content_height=300)
    viewport.scroll_to(200 - PIN_THRESHOLD + 1)
    assert viewport.pinned
    viewport.scroll_to(200 - PIN_THRESHOLD)
    assert not viewport.pinned


def test_jump_to_bottom():
    viewport = Viewport(view_height=100, content_height=300)
    viewport.scroll_to(0)
    viewport.content_changed(500)
    viewport.scroll_to_bottom()
    assert viewport.offset == 400
    assert viewport.pinned


def test_scroll_is_clamped():
    viewport = Viewport(view_height=100, content_height=50)
    viewport.scroll_to(999)
    assert viewport.offset == 0
    viewport.scroll_to(-5)
    assert viewport.offset == 0
    assert viewport.pinned


def test_shrinking_content_clamps_offset():
    viewport = Viewport(view_height=10, content_height=200)
    viewport.scroll_to(120)
    viewport.content_changed(100)
    assert viewport.offset == 90
