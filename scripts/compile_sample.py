"""Compile dashboard specifications for a few sample datasets and print them."""

import asyncio
import json
import sys

from dashboard_compiler.spec.compiler import compile_with_planner

SAMPLE_DATASETS = [
    {
        "dataset_name": "kommo_leads",
        "columns": [
            {"name": "lead_id", "type": "bigint"},
            {"name": "created_at", "type": "timestamptz"},
            {"name": "unidade", "type": "text"},
            {"name": "vendedora", "type": "text"},
            {"name": "st_entrada", "type": "boolean"},
            {"name": "st_qualificado", "type": "boolean"},
            {"name": "st_exp_agendada", "type": "boolean"},
            {"name": "st_venda", "type": "boolean"},
            {"name": "valor_venda", "type": "numeric"},
        ],
        "rows": [
            {"lead_id": 1, "created_at": "2026-01-02", "st_entrada": True, "st_qualificado": "sim", "st_venda": 0},
            {"lead_id": 2, "created_at": "2026-01-02", "st_entrada": True, "st_qualificado": "não", "st_venda": 0},
            {"lead_id": 3, "created_at": "2026-01-03", "st_entrada": "1", "st_qualificado": "x",
             "st_exp_agendada": "s", "st_venda": 1, "valor_venda": "R$ 1,500.00"},
        ],
    },
    {
        "dataset_name": "ad_spend",
        "columns": ["dia", "campanha", "investimento", "cpl", "taxa_conversao"],
        "rows": [],
    },
]


async def main() -> None:
    for sample in SAMPLE_DATASETS:
        result = await compile_with_planner(
            sample["columns"],
            dataset_name=sample["dataset_name"],
            rows=sample["rows"],
        )
        print(f"[compile] {sample['dataset_name']}: {result.strategy.value}, persistable={result.persistable}")
        json.dump(result.to_dict(), sys.stdout, indent=2, ensure_ascii=False, default=str)
        print()


if __name__ == "__main__":
    asyncio.run(main())
