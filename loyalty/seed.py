import json
from loyalty import db
from loyalty.models import AppSetting

DEFAULT_SETTINGS = {
    # key: [value, description, value_type]
    'VALUE_ROUNDING_DIGITS': ['2', 'Decimal places kept on settled values', 'int'],
    'APPLY_MINIMUM_INCENTIVE': ['true', 'Floor positive values at the user type minimum incentive when its wallet is active', 'bool'],
    'PUBLISH_PREVIEW_REPORT': ['false', 'Write an .xlsx report per finished run and store its link on the run', 'bool'],
    'EXPORT_FILE_EXTENSIONS': [json.dumps(['.csv', '.xlsx']), 'User export file types, in lookup order (JSON)', 'json'],
}

def seed_data():
    """Populates the database with default settlement settings."""
    for key, data in DEFAULT_SETTINGS.items():
        setting = AppSetting.query.filter_by(key=key).first()
        if not setting: # Only add if it doesn't exist
            setting = AppSetting(key=key, value=data[0], description=data[1], value_type=data[2])
            db.session.add(setting)
            print(f'Seeding setting: {key}')

    db.session.commit()
    print('Seeding complete.')
