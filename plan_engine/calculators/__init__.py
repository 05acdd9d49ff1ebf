"""
Calculators Package

Pure calculation components: commission math and schedule layout.
"""

from .commission import CommissionCalculator, quantize_money, rate_fraction
from .schedule import InstallmentScheduleGenerator

__all__ = [
    "CommissionCalculator",
    "InstallmentScheduleGenerator",
    "quantize_money",
    "rate_fraction",
]
