"""Exportación JSON del historial de pagos.

Por qué JSON:
- Interoperabilidad con hojas de cálculo, jq y pipelines de contabilidad.
- Persiste lo ya leído sin volver a consultar al nodo.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from core.domain.models import Page, PaymentRecord


def export_payments_json(*, pages: Sequence[Page[PaymentRecord]], output_path: Path) -> Path:
    """Exporta las páginas leídas a JSON UTF-8 con formato estable (orden del servidor)."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    payments = [record.model_dump(mode="json") for page in pages for record in page.items]
    last = pages[-1] if pages else None
    payload = {
        "payments": payments,
        "page_count": len(pages),
        "next_cursor": last.cursor_out.model_dump(mode="json") if last and last.cursor_out else None,
    }
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path
