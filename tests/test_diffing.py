from launchci.diffing import change_count, diff_lines, has_real_change, normalize_content


def test_identical_content_is_one_segment():
    diff = diff_lines("a: 1\nb: 2\n", "a: 1\nb: 2\n")
    assert len(diff) == 1
    assert not has_real_change(diff)


def test_escaped_newlines_are_normalized():
    assert normalize_content("a\\nb\r\nc") == "a\nb\nc"
    assert not has_real_change(diff_lines("a\\nb", "a\nb"))


def test_changed_line():
    diff = diff_lines("a: 1\nb: 2\n", "a: 1\nb: 3\n")
    assert has_real_change(diff)
    assert change_count(diff) == 2
    assert diff[0] == {"value": "a: 1\n", "added": False, "removed": False}


def test_single_segment_is_not_a_change():
    # clearing or filling the whole text yields one segment
    assert diff_lines("a: 1\n", "") == [{"value": "a: 1\n", "added": False, "removed": True}]
    assert not has_real_change(diff_lines("a: 1\n", ""))
    assert not has_real_change(diff_lines("", "x"))


def test_missing_diff_is_no_evidence():
    assert not has_real_change(None)
    assert has_real_change([])
