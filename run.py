# ==============================================================================
# run.py
# ------------------------------------------------------------------------------
# Entry point used by the `flask` command (FLASK_APP=run.py).
# ==============================================================================

from loyalty import create_app, db
from loyalty.models import AppSetting, IncentiveRule, SettlementRun, SettlementLog
from loyalty.settlement.engine import SettlementEngine
from loyalty.settlement.scope import IncentiveScope

# Create the Flask application instance using the factory function
app = create_app()

@app.shell_context_processor
def make_shell_context():
    """Provides a shell context for the `flask shell` command."""
    return {
        'db': db,
        'AppSetting': AppSetting,
        'IncentiveRule': IncentiveRule,
        'SettlementRun': SettlementRun,
        'SettlementLog': SettlementLog,
        'SettlementEngine': SettlementEngine,
        'IncentiveScope': IncentiveScope,
    }
