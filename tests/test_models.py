import pytest

from dynamodb_segscan.models import (Expression, PageCursor, ResumePoint, ScanCheckpoint,
                                     ScanOptions, ScanRequest, ScanResponse, SegmentPassThrough)


def test_request_kwargs_minimal():
    req = ScanRequest(table_name="orders", total_segments=4, segment=2)
    assert req.to_kwargs() == {
        "TableName": "orders",
        "Segment": 2,
        "TotalSegments": 4,
        "ConsistentRead": False,
    }


def test_request_kwargs_with_predicate_options_and_key():
    pred = Expression("#s = :s", {"#s": "status"}, {":s": {"S": "OPEN"}})
    opts = ScanOptions(index_name="by-status", limit=25,
                       projection_expression="#id, #s", projection_names={"#id": "id"},
                       return_consumed_capacity="TOTAL")
    req = ScanRequest("orders", 4, 1, consistent_read=True, predicate=pred,
                      exclusive_start_key={"id": {"S": "x"}}, options=opts)
    kw = req.to_kwargs()
    assert kw["FilterExpression"] == "#s = :s"
    assert kw["ExpressionAttributeNames"] == {"#s": "status", "#id": "id"}
    assert kw["ExpressionAttributeValues"] == {":s": {"S": "OPEN"}}
    assert kw["ExclusiveStartKey"] == {"id": {"S": "x"}}
    assert kw["IndexName"] == "by-status"
    assert kw["Limit"] == 25
    assert kw["ProjectionExpression"] == "#id, #s"
    assert kw["ReturnConsumedCapacity"] == "TOTAL"
    assert kw["ConsistentRead"] is True


def test_predicate_without_values_omits_value_map():
    req = ScanRequest("t", 1, 0, predicate=Expression("attribute_exists(#a)", {"#a": "a"}))
    assert "ExpressionAttributeValues" not in req.to_kwargs()


def test_next_page_keeps_segment_and_predicate():
    pred = Expression("a = :a", {}, {":a": {"N": "1"}})
    req = ScanRequest("t", 3, 2, predicate=pred)
    nxt = req.next_page({"pos": {"N": "2"}})
    assert nxt.segment == 2
    assert nxt.predicate is pred
    assert nxt.exclusive_start_key == {"pos": {"N": "2"}}
    assert req.exclusive_start_key is None


@pytest.mark.parametrize("lek", [None, {}])
def test_response_without_key_is_terminal(lek):
    raw = {"Items": [{"a": {"S": "1"}}], "Count": 1, "ScannedCount": 3}
    if lek is not None:
        raw["LastEvaluatedKey"] = lek
    resp = ScanResponse.from_raw(raw)
    assert resp.is_terminal
    assert resp.last_evaluated_key is None
    assert resp.scanned_count == 3


def test_response_with_key_has_more():
    resp = ScanResponse.from_raw({"Items": [], "LastEvaluatedKey": {"pk": {"S": "k"}}})
    assert not resp.is_terminal
    assert resp.count == 0


def test_pass_through_keeps_segment():
    tagged = SegmentPassThrough(ScanRequest("t", 2, 1), 1)
    assert tagged.segment == tagged.payload.segment == 1


@pytest.mark.parametrize("text", ["", None])
def test_expression_empty(text):
    assert Expression(text).is_empty


def test_whitespace_expression_is_left_to_the_store():
    assert not Expression("  ").is_empty


def test_expression_merge():
    a = Expression("#a = :a", {"#a": "a"}, {":a": {"N": "1"}})
    b = Expression("#b = :b", {"#b": "b"}, {":b": {"N": "2"}})
    merged = a.merge(b, "OR")
    assert merged.expression == "(#a = :a) OR (#b = :b)"
    assert merged.attribute_names == {"#a": "a", "#b": "b"}
    assert a.merge(Expression("")) is a
    assert Expression("").merge(b) is b


def test_expression_merge_rejects_conflicts():
    a = Expression("#a = :v", {"#a": "a"}, {":v": {"N": "1"}})
    b = Expression("#b = :v", {"#b": "b"}, {":v": {"N": "2"}})
    with pytest.raises(ValueError, match=":v"):
        a.merge(b)


class TestResumePoint:
    def cursor(self, position, size, lek):
        return PageCursor(segment=0, total_segments=2, exclusive_start_key={"pos": {"N": "4"}},
                          last_evaluated_key=lek, position=position, page_size=size)

    def test_mid_page_replays_page_and_skips_consumed(self):
        point = self.cursor(0, 3, {"pos": {"N": "7"}}).resume_point
        assert point == ResumePoint({"pos": {"N": "4"}}, skip=1)

    def test_end_of_page_moves_to_next_page(self):
        point = self.cursor(2, 3, {"pos": {"N": "7"}}).resume_point
        assert point == ResumePoint({"pos": {"N": "7"}})

    def test_end_of_last_page_exhausts_segment(self):
        assert self.cursor(2, 3, None).resume_point.exhausted


class TestCheckpoint:
    def test_unobserved_segments_start_fresh(self):
        cp = ScanCheckpoint(3)
        assert cp.resume_point(1) == ResumePoint()
        assert not cp.is_complete

    def test_observe_and_complete(self):
        cp = ScanCheckpoint(2)
        for seg in range(2):
            cp.observe(PageCursor(seg, 2, None, None, 0, 1))
        assert cp.is_complete

    def test_advance_past_empty_pages(self):
        cp = ScanCheckpoint(2)
        cp.advance(0, {"pos": {"N": "4"}})
        assert cp.resume_point(0) == ResumePoint({"pos": {"N": "4"}})
        cp.advance(0, None)
        cp.advance(1, {})
        assert cp.is_complete
        with pytest.raises(ValueError):
            cp.advance(2, None)

    def test_observe_rejects_other_segment_count(self):
        cp = ScanCheckpoint(2)
        with pytest.raises(ValueError):
            cp.observe(PageCursor(0, 3, None, None, 0, 1))

    def test_segment_out_of_range(self):
        with pytest.raises(ValueError):
            ScanCheckpoint(2).resume_point(2)
        with pytest.raises(ValueError):
            ScanCheckpoint(0)

    def test_json_round_trip_with_binary_key(self):
        cp = ScanCheckpoint(4, {
            0: ResumePoint({"id": {"B": b"\x00\xff"}, "sk": {"N": "3"}}, skip=2),
            3: ResumePoint(exhausted=True),
        })
        restored = ScanCheckpoint.from_json(cp.to_json())
        assert restored.total_segments == 4
        assert restored.resume_point(0) == ResumePoint({"id": {"B": b"\x00\xff"}, "sk": {"N": "3"}}, skip=2)
        assert restored.resume_point(3).exhausted
        assert restored.resume_point(1) == ResumePoint()
