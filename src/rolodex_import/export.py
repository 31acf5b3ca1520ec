from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, Union

import pandas as pd

from .models import Contact

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Name",
    "Company",
    "Role",
    "Location",
    "Emails",
    "Phones",
    "LinkedIn URL",
    "Other URLs",
    "Notes",
    "Source",
    "Created Date",
    "Updated Date",
]


def contacts_to_frame(contacts: Iterable[Contact]) -> pd.DataFrame:
    rows = []
    for contact in contacts:
        info = contact.contact_info
        rows.append(
            {
                "Name": contact.name,
                "Company": contact.company,
                "Role": contact.role,
                "Location": contact.location,
                "Emails": "; ".join(info.emails),
                "Phones": "; ".join(info.phones),
                "LinkedIn URL": info.linkedin_url,
                "Other URLs": "; ".join(f"{url.platform}: {url.url}" for url in info.other_urls),
                "Notes": contact.notes,
                "Source": contact.source,
                "Created Date": contact.created_at.isoformat(),
                "Updated Date": contact.updated_at.isoformat(),
            }
        )
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def write_rolodex_csv(contacts: Iterable[Contact], path: Union[str, Path]) -> Path:
    """Write contacts in the format the rolodex parser reads back."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df = contacts_to_frame(contacts)
    df.to_csv(str(out_path), index=False, encoding="utf-8", quoting=csv.QUOTE_ALL)
    logger.info("Saved: %s (%d contact(s))", out_path, len(df))
    return out_path


__all__ = ["EXPORT_COLUMNS", "contacts_to_frame", "write_rolodex_csv"]
