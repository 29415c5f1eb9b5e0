# ==============================================================================
# loyalty/settlement/log_builder.py
# ------------------------------------------------------------------------------
# Joins the exported user list with a run's breakdown to produce the per-user
# settlement ledger rows.
# ==============================================================================

import logging
import pandas as pd
from loyalty.models import MethodType
from .breakdown import EntityBreakdown
from .schema import EXPECTED_USER_EXPORT, LOG_COLUMNS


def _clean_text(value):
    if value is None or pd.isna(value):
        return None
    if isinstance(value, float) and value.is_integer():
        # Phone numbers read from spreadsheets come back as floats
        return str(int(value))
    return str(value).strip()


def empty_log_frame():
    return pd.DataFrame(columns=LOG_COLUMNS)


def build_log_frame(breakdown, users, digits=2):
    """
    Computes each user's value for the run.

    Args:
        breakdown: The run's breakdown variant.
        users (pd.DataFrame): Validated user export, or None.
        digits (int): Rounding applied to the values.

    Returns:
        pd.DataFrame: One row per user, in export order, with LOG_COLUMNS.
    """
    if users is None or users.empty:
        return empty_log_frame()

    frame = users.copy()
    if isinstance(breakdown, EntityBreakdown):
        join_column = EXPECTED_USER_EXPORT['join_columns'][MethodType(breakdown.method).value]
        values = breakdown.value_map()
        # Users outside every configured entity earn nothing
        frame['value'] = frame[join_column].map(values).fillna(0)
        unmatched = int((~frame[join_column].isin(list(values))).sum())
        if unmatched:
            logging.warning(f"{unmatched} user(s) have no {breakdown.method.value.lower()} value; set to 0.")
    else:
        frame['value'] = float(breakdown.value or 0)

    frame['points'] = pd.to_numeric(frame['points'], errors='coerce').fillna(0)
    frame['value'] = frame['value'].astype(float).round(digits)
    for col in ('name', 'district', 'governorate', 'phone'):
        frame[col] = frame[col].map(_clean_text)

    logging.info(f"Settlement log built for {len(frame)} user(s); total value {frame['value'].sum():,.2f}.")
    return frame[LOG_COLUMNS].reset_index(drop=True)


def log_rows(frame):
    """Converts the log frame into plain dicts ready for SettlementLogEntry."""
    rows = []
    for position, record in enumerate(frame.to_dict(orient='records')):
        rows.append({
            'position': position,
            'user': int(record['user']),
            'points': float(record['points']),
            'value': float(record['value']),
            'name': record['name'],
            'district': record['district'],
            'governorate': record['governorate'],
            'phone': record['phone'],
        })
    return rows
