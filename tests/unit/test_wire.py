"""Unit tests for the wire message schema."""

from __future__ import annotations

import msgspec
import pytest

from dfconnect.ports.outbound import wire


def _struct_types() -> list[type[wire.WireStruct]]:
    return [
        value
        for value in vars(wire).values()
        if isinstance(value, type) and issubclass(value, wire.WireStruct)
    ]


@pytest.mark.unit
class TestWire:
    """Tests for wire message definitions and serialization."""

    def test_every_message_is_keyword_only(self) -> None:
        for message_type in _struct_types():
            assert message_type.__struct_config__.kw_only, message_type.__name__

    def test_required_field_after_optional_one(self) -> None:
        literal = wire.LiteralMsg(value=1, data_type=wire.DataTypeMsg(kind="integer"))
        project = wire.ProjectMsg(plan_id=3, expressions=(literal,))

        decoded = wire.decode_message(wire.encode_message(project), wire.RelationMsg)

        assert decoded == project
        assert decoded.input is None

    def test_positional_arguments_rejected(self) -> None:
        with pytest.raises(TypeError):
            wire.FilterMsg(1, None, None)  # type: ignore[misc]

    def test_tagged_union_decodes_by_type(self) -> None:
        body = wire.ExecutePlanResponse(
            session_id="s",
            operation_id="op",
            response_id="op/0",
            body=wire.ResultCompleteBody(),
        )

        decoded = wire.decode_message(wire.encode_message(body), wire.ExecutePlanResponse)

        assert isinstance(decoded.body, wire.ResultCompleteBody)

    def test_unknown_fields_ignored(self) -> None:
        data = msgspec.msgpack.encode(
            {"session_id": "s", "operation_id": "op", "added_later": 1}
        )

        decoded = wire.decode_message(data, wire.ReleaseExecuteResponse)

        assert decoded == wire.ReleaseExecuteResponse(session_id="s", operation_id="op")
