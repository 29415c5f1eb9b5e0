# ==============================================================================
# loyalty/settlement/schema.py
# ------------------------------------------------------------------------------
# Defines the expected structure of a user export file delivered by the
# population export service. This schema is the single source of truth for
# the validator.
# ==============================================================================

EXPECTED_USER_EXPORT = {
    'required_columns': ['user', 'name', 'phone', 'points', 'district', 'governorate'],
    'numeric_columns': ['user', 'points'],
    'text_columns': ['name', 'phone', 'district', 'governorate'],
    # Needed only when the run's method joins users on that entity
    'join_columns': {
        'GOVERNORATE': 'governorate_id',
        'DISTRICT': 'district_id',
        'SEGMENT': 'segment_id',
    },
}

# Column order of the settlement log and the generated report
LOG_COLUMNS = ['user', 'points', 'value', 'name', 'district', 'governorate', 'phone']
