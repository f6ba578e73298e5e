from __future__ import annotations

import json

import jsonschema
import pytest
import yaml
from jsonschema.exceptions import ValidationError

from xlport.config.loader import SCHEMA_PATH

"""Config schema contract test."""

EXAMPLE = """
defaults:
  batch_size: 500
  timeout_seconds: 120
  preview_rows: 10
connections:
  erp: "Server=sql01,1433;Initial Catalog=erp;User Id=${ERP_USER};Password=${ERP_PWD};"
  dw: "Host=pg;Port=5432;Database=dw;Username=etl;Password=${DW_PWD};"
  local: "Data Source=./local.db"
imports:
  customers:
    source: data/customers.xlsx
    sheet: 客户
    header_row: null
    connection: dw
    table: customers
    clear_before_import: true
    split_each_row: false
    max_rows: 1000
    mappings:
      - {column: A, field: customer_id, type: "VARCHAR(50)", required: true}
      - {column: B, field: customer_name}
queries:
  monthly:
    connection: erp
    sql: "SELECT * FROM sales WHERE sold_on >= @from"
    parameters: {from: "2024-01-01"}
    output: "reports/monthly.xlsx!Sales"
  copy:
    connection: erp
    sql: "SELECT * FROM customers"
    output: customers_copy
    output_connection: dw
    clear_before_write: true
"""


def _schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_schema_is_valid_draft7():
    jsonschema.Draft7Validator.check_schema(_schema())


def test_config_schema_valid_example():
    jsonschema.validate(yaml.safe_load(EXAMPLE), _schema())


@pytest.mark.parametrize(
    "mutate",
    [
        lambda c: c.pop("connections"),
        lambda c: c["imports"]["customers"].pop("table"),
        lambda c: c["imports"]["customers"].update(batch_size=0),
        lambda c: c["imports"]["customers"].update(unknown_key=True),
        lambda c: c["queries"]["monthly"].update(output=""),
        lambda c: c["connections"].update(bad=5),
    ],
)
def test_config_schema_rejects(mutate):
    config = yaml.safe_load(EXAMPLE)
    mutate(config)
    with pytest.raises(ValidationError):
        jsonschema.validate(config, _schema())
