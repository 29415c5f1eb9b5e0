# ==============================================================================
# loyalty/settlement/validator.py
# ------------------------------------------------------------------------------
# Handles the validation of a user export's structure and data types.
# ==============================================================================

import os
import pandas as pd
from .schema import EXPECTED_USER_EXPORT


def read_user_export(filepath):
    """
    Reads a .csv or .xlsx user export into a DataFrame. Text columns are read
    as strings so phone numbers keep their leading zero.
    """
    text_dtypes = {col: str for col in EXPECTED_USER_EXPORT['text_columns']}
    extension = os.path.splitext(filepath)[1].lower()
    if extension == '.csv':
        return pd.read_csv(filepath, dtype=text_dtypes)
    return pd.read_excel(filepath, dtype=text_dtypes)


def validate_user_export(df, method=None):
    """
    Validates the structure and basic data types of a user export.

    Args:
        df (pd.DataFrame): The export as read from disk or from the service.
        method (MethodType | str, optional): The run's method; entity methods
            also require their join column.

    Returns:
        tuple: A tuple containing:
            - pd.DataFrame: The cleaned frame if validation is successful, else None.
            - list: A list of human-readable error messages if validation fails.
    """
    errors = []
    required = list(EXPECTED_USER_EXPORT['required_columns'])
    join_column = EXPECTED_USER_EXPORT['join_columns'].get(getattr(method, 'value', method))
    if join_column:
        required.append(join_column)

    # 1. Check for required columns
    missing_columns = [col for col in required if col not in df.columns]
    if missing_columns:
        errors.append(f"User export is missing required columns: {', '.join(missing_columns)}")
        return None, errors

    df = df.copy()
    empty_ids = df.index[df['user'].isna()]

    # 2. Check numeric columns for non-numeric values
    numeric_columns = list(EXPECTED_USER_EXPORT['numeric_columns'])
    if join_column:
        numeric_columns.append(join_column)
    for col in numeric_columns:
        # Coerce to numeric, making non-numbers NaN
        numeric_series = pd.to_numeric(df[col].astype(str).str.replace(',', ''), errors='coerce')
        # Rows where the original value was not empty but the numeric version is NaN
        invalid_rows = df[numeric_series.isna() & df[col].notna()]
        for index in invalid_rows.index:
            value = invalid_rows.loc[index, col]
            errors.append(f"User export row {index + 2}: value '{value}' in column '{col}' must be a number.")
        df[col] = numeric_series

    # 3. Every row needs a user id
    for index in empty_ids:
        errors.append(f"User export row {index + 2}: column 'user' is empty.")

    if errors:
        return None, errors

    df['user'] = df['user'].astype(int)
    df['points'] = df['points'].fillna(0)
    return df, []
