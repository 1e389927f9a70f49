"""
Sensitivity checks for the policy window test.
"""

from .sensitivity_scanner import SensitivityScanner, SensitivityReport, ScanEntry

__all__ = ['SensitivityScanner', 'SensitivityReport', 'ScanEntry']
