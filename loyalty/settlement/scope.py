# ==============================================================================
# loyalty/settlement/scope.py
# ------------------------------------------------------------------------------
# The request context used to look up incentive configuration and to key a
# settlement run.
# ==============================================================================

from dataclasses import dataclass, asdict
from typing import Optional

from loyalty.models import Actions


@dataclass(frozen=True)
class IncentiveScope:
    vertical_id: int
    supplier_id: int
    user_type_id: Optional[int] = None
    product_type_id: Optional[int] = None
    product_id: Optional[int] = None
    action: Optional[Actions] = None

    def __post_init__(self):
        if self.action is not None:
            object.__setattr__(self, 'action', Actions(self.action))

    def match_fields(self):
        """Scope values in IncentiveRule.SCOPE_FIELDS order."""
        return {
            'vertical_id': self.vertical_id,
            'supplier_id': self.supplier_id,
            'user_type_id': self.user_type_id,
            'product_type_id': self.product_type_id,
            'product_id': self.product_id,
        }

    def __str__(self):
        parts = ', '.join(f"{k}={v}" for k, v in asdict(self).items() if v is not None)
        return f"scope({parts})"
