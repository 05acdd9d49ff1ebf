"""
PAYMENT PLAN & COMMISSION ENGINE
Installment lifecycle, commission aggregation and the overdue status job.
"""

from .aggregator import PlanAggregator
from .calculators import CommissionCalculator
from .jobs import JobMonitor, OverdueStatusJob
from .ledger import InstallmentLedger
from .processor import PaymentProcessor

__all__ = [
    'CommissionCalculator',
    'InstallmentLedger',
    'JobMonitor',
    'OverdueStatusJob',
    'PaymentProcessor',
    'PlanAggregator',
]
