from __future__ import annotations

import io
import logging
import time
from datetime import datetime, timezone
from typing import Iterable

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from adscraper.models import AdRecord
from core.errors import ExportError

logger = logging.getLogger(__name__)

SHEET_TITLE = "Scraped Ads"
SHEET_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
COLUMNS = (
    ("Advertiser", 30),
    ("Headline", 40),
    ("Description", 60),
    ("Destination URL", 50),
    ("Details URL", 50),
    ("Image URLs", 60),
    ("Format", 12),
    ("Date Range", 25),
    ("Advertiser ID", 26),
    ("Creative ID", 26),
    ("Source", 12),
    ("Scraped At", 26),
)


def to_sheet(records: Iterable[AdRecord]) -> bytes:
    scraped_at = datetime.now(timezone.utc).isoformat()
    try:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = SHEET_TITLE
        sheet.append([name for name, _ in COLUMNS])
        for index, (_, width) in enumerate(COLUMNS, start=1):
            sheet.column_dimensions[get_column_letter(index)].width = width

        count = 0
        for record in records:
            sheet.append(
                [
                    record.advertiser,
                    record.headline,
                    record.description,
                    record.destination_url,
                    record.details_link,
                    ", ".join(record.images),
                    record.format.value,
                    record.date_range,
                    record.advertiser_id,
                    record.creative_id,
                    record.source,
                    scraped_at,
                ]
            )
            count += 1

        buffer = io.BytesIO()
        workbook.save(buffer)
    except (ValueError, TypeError, OSError) as exc:
        raise ExportError("export_failed", f"Failed to export: {exc}") from exc
    logger.info("export_written rows=%s", count)
    return buffer.getvalue()


def export_filename() -> str:
    return f"ads-transparency-{int(time.time() * 1000)}.xlsx"
