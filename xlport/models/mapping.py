from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "FieldMapping",
]


@dataclass(frozen=True)
class FieldMapping:
    """Association between one source column and one target field.

    target_field_name values are unique and non-empty within a mapping set;
    FieldMappingGenerator guarantees this via numeric suffixes and the import
    engine re-validates it before touching the target.
    """
    source_column_letter: str  # 物理列 (A, B, ..., AA)
    source_column_name: str  # ヘッダ文字列 (空なら Col_<letter>)
    target_field_name: str
    target_field_type: str  # neutral type, e.g. VARCHAR(50) / DECIMAL(10,2) / DATE
    is_required: bool = False
