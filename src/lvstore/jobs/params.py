"""Parameter records of every job type."""

from __future__ import annotations

from dataclasses import dataclass

from lvstore.core.params import ParameterReader, ParameterWriter, Parameters


@dataclass
class RecoverFractureJobParameters(Parameters):
    """Recover the replica of *fracture_id* under *damaged_scheme_id* from *source_scheme_id*."""

    fracture_id: int = 0
    damaged_scheme_id: int = 0
    source_scheme_id: int = 0

    def write(self, writer: ParameterWriter) -> None:
        writer.int32(self.fracture_id).int32(self.damaged_scheme_id).int32(self.source_scheme_id)

    @classmethod
    def read(cls, reader: ParameterReader) -> RecoverFractureJobParameters:
        return cls(
            fracture_id=reader.int32(),
            damaged_scheme_id=reader.int32(),
            source_scheme_id=reader.int32(),
        )


@dataclass
class MergeFractureJobParameters(Parameters):
    """Merge the listed fractures of one table into a new fracture."""

    fracture_ids: list[int] | None = None
    drop_merged: bool = True

    def write(self, writer: ParameterWriter) -> None:
        writer.int_array(self.fracture_ids).boolean(self.drop_merged)

    @classmethod
    def read(cls, reader: ParameterReader) -> MergeFractureJobParameters:
        return cls(fracture_ids=reader.int_array(), drop_merged=reader.boolean())


__all__ = ["RecoverFractureJobParameters", "MergeFractureJobParameters"]
