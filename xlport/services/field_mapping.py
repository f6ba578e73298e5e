from __future__ import annotations

import re
from collections.abc import Sequence

from ..excel.columns import column_letter
from ..models.mapping import FieldMapping

"""Default field mapping generation (header text -> target field / type).

Pure and deterministic: the same header list always yields the same mapping
set. Generated mappings are never marked required; callers that edit a
mapping set by hand may flip is_required per field.
"""

__all__ = [
    "KNOWN_FIELD_NAMES",
    "DEFAULT_TYPE",
    "FieldMappingGenerator",
    "generate_mappings",
    "default_field_name",
    "infer_field_type",
]

DEFAULT_TYPE = "VARCHAR(100)"

# 既知の業務用語 -> 識別子 (正規化前の見出し文字列で照合)
KNOWN_FIELD_NAMES: dict[str, str] = {
    "客户编号": "customer_id",
    "客户名称": "customer_name",
    "联系电话": "phone",
    "邮箱": "email",
    "地址": "address",
    "创建日期": "created_date",
    "订单编号": "order_id",
    "产品名称": "product_name",
    "数量": "quantity",
    "单价": "unit_price",
    "总金额": "total_amount",
    "销售日期": "sales_date",
    "产品编号": "product_id",
    "类别": "category",
    "价格": "price",
    "库存": "stock",
    "供应商": "supplier",
    "员工编号": "employee_id",
    "姓名": "name",
    "部门": "department",
    "职位": "position",
    "入职日期": "hire_date",
    "薪资": "salary",
    "商品编号": "item_id",
    "商品名称": "item_name",
    "库存数量": "stock_quantity",
    "单位": "unit",
    "仓库位置": "warehouse_location",
    "最后更新": "last_updated",
    "金额": "amount",
    "日期": "date",
    "电话": "phone",
    "名称": "name",
    "编号": "id",
    "e-mail": "email",
    "email address": "email",
    "phone number": "phone",
    "telephone": "phone",
    "tel": "phone",
}

# 型推論カテゴリ (上から順に評価し最初の一致を採用)
_TYPE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("VARCHAR(50)", ("编号", "电话", "phone", r"\btel\b", "code", r"\bid\b", "_id")),
    ("VARCHAR(100)", ("名称", "name", "地址", "address", "部门", "职位", "单位", "位置", "location", "city")),
    ("VARCHAR(200)", ("邮箱", "email", "e-mail")),
    ("INT", ("数量", "quantity", "qty", "库存", "stock", r"\bcount\b")),
    ("DECIMAL(10,2)", ("价格", "price", "金额", "amount", "薪资", "salary", "cost", "total")),
    ("DATE", ("日期", "date", "入职", "更新")),
)


def _matches(keyword: str, text: str) -> bool:
    if keyword.startswith("\\b"):
        # 英字の短いキーワード (id) は単語境界で判定: "paid" / "valid" を除外
        return re.search(r"(?<![a-z])" + keyword[2:-2] + r"(?![a-z])", text) is not None
    return keyword in text


def default_field_name(header: str, index: int) -> str:
    """Target identifier for one header before collision handling."""
    stripped = header.strip()
    known = KNOWN_FIELD_NAMES.get(stripped) or KNOWN_FIELD_NAMES.get(stripped.lower())
    if known:
        return known
    normalized = stripped.replace(" ", "_").replace("-", "_").lower()
    if not normalized:
        return f"col_{column_letter(index).lower()}"
    return normalized


def infer_field_type(header: str) -> str:
    """Keyword match on the original header text (case-insensitive)."""
    lowered = header.strip().lower()
    for sql_type, keywords in _TYPE_RULES:
        if any(_matches(k, lowered) for k in keywords):
            return sql_type
    return DEFAULT_TYPE


class FieldMappingGenerator:
    """Turns header strings into a mapping set with unique target names."""

    def generate(self, columns: Sequence[str]) -> list[FieldMapping]:
        used: set[str] = set()
        mappings: list[FieldMapping] = []
        for index, header in enumerate(columns, start=1):
            base = default_field_name(header, index)
            name = base
            counter = 1
            while name in used:
                name = f"{base}_{counter}"
                counter += 1
            used.add(name)
            mappings.append(
                FieldMapping(
                    source_column_letter=column_letter(index),
                    source_column_name=header,
                    target_field_name=name,
                    target_field_type=infer_field_type(header),
                    is_required=False,
                )
            )
        return mappings


def generate_mappings(columns: Sequence[str]) -> list[FieldMapping]:
    return FieldMappingGenerator().generate(columns)
