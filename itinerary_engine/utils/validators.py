import re
from typing import List, Dict, Any, Optional
from datetime import date
from decimal import Decimal

from itinerary_engine.models.request_models import UserPreferences
from itinerary_engine.models.response_models import ValidationIssue, ValidationResult

MAX_TRIP_DURATION_DAYS = 30
MAX_GROUP_SIZE = 20

KNOWN_DIETARY_RESTRICTIONS = [
    'vegetarian', 'vegan', 'gluten-free', 'dairy-free', 'nut-free',
    'kosher', 'halal', 'pescatarian', 'keto', 'paleo'
]


def _error(field: str, code: str, message: str, suggestion: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(field=field, code=code, message=message, severity="error", suggestion=suggestion)


def _warning(field: str, code: str, message: str, suggestion: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(field=field, code=code, message=message, severity="warning", suggestion=suggestion)


class PreferenceValidator:
    """Validator for traveler preferences ahead of generation"""

    @staticmethod
    def validate_required(preferences: UserPreferences) -> Dict[str, Any]:
        """Check the fields every generation needs"""
        errors = []

        if not preferences.start_date:
            errors.append(_error('start_date', 'REQUIRED_FIELD', 'Start date is required'))
        if not preferences.end_date:
            errors.append(_error('end_date', 'REQUIRED_FIELD', 'End date is required'))
        if not preferences.primary_destination or not preferences.primary_destination.strip():
            errors.append(_error('primary_destination', 'REQUIRED_FIELD', 'Primary destination is required'))

        return {
            'valid': len(errors) == 0,
            'errors': errors
        }

    @staticmethod
    def validate_dates(start_date: Optional[date], end_date: Optional[date],
                       max_duration_days: int = MAX_TRIP_DURATION_DAYS) -> Dict[str, Any]:
        """Validate trip dates; missing dates are left to validate_required"""
        errors = []
        if not start_date or not end_date:
            return {'valid': True, 'errors': errors, 'duration_days': 0}

        if start_date >= end_date:
            errors.append(_error('end_date', 'INVALID_DATE_RANGE', 'End date must be after start date'))

        trip_duration = (end_date - start_date).days
        if trip_duration > max_duration_days:
            errors.append(_error(
                'end_date', 'EXCESSIVE_DURATION',
                f'Trip duration cannot exceed {max_duration_days} days',
                suggestion='Consider splitting the journey into several shorter trips'
            ))

        if trip_duration < 1:
            errors.append(_error('end_date', 'INSUFFICIENT_DURATION', 'Trip must be at least 1 day'))

        return {
            'valid': len(errors) == 0,
            'errors': errors,
            'duration_days': trip_duration
        }

    @staticmethod
    def validate_budget(budget_min: Optional[Decimal], budget_max: Optional[Decimal], currency: str) -> Dict[str, Any]:
        """Validate budget range and currency"""
        errors = []

        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            errors.append(_error(
                'budget_max', 'INVALID_BUDGET_RANGE',
                'Maximum budget must be greater than minimum budget'
            ))

        if not re.match(r"^[A-Za-z]{3}$", currency or ""):
            errors.append(_error('currency', 'INVALID_CURRENCY', 'Currency must be a 3-letter code (e.g., USD, EUR)'))

        return {
            'valid': len(errors) == 0,
            'errors': errors
        }

    @staticmethod
    def validate_travelers(adults: int, children: int, infants: int,
                           max_group_size: int = MAX_GROUP_SIZE) -> Dict[str, Any]:
        """Validate group composition"""
        errors = []
        warnings = []

        total_travelers = adults + children + infants
        if total_travelers == 0:
            errors.append(_error('adults', 'NO_TRAVELERS', 'At least one traveler is required'))

        if total_travelers > max_group_size:
            warnings.append(_warning(
                'adults', 'LARGE_GROUP',
                'Large group travel may have limited options',
                suggestion='Consider splitting into smaller groups'
            ))

        return {
            'valid': len(errors) == 0,
            'errors': errors,
            'warnings': warnings,
            'total_travelers': total_travelers
        }

    @staticmethod
    def validate_special_requirements(dietary_restrictions: List[str]) -> Dict[str, Any]:
        """Unknown dietary restrictions are only warned about"""
        warnings = []

        for restriction in dietary_restrictions:
            if restriction.lower() not in KNOWN_DIETARY_RESTRICTIONS:
                warnings.append(_warning(
                    'dietary_restrictions', 'UNKNOWN_DIETARY_RESTRICTION',
                    f'Unknown dietary restriction: {restriction}'
                ))

        return {
            'valid': True,
            'errors': [],
            'warnings': warnings
        }

    @staticmethod
    def validate_complete_preferences(
        preferences: UserPreferences,
        max_duration_days: int = MAX_TRIP_DURATION_DAYS,
        max_group_size: int = MAX_GROUP_SIZE,
    ) -> ValidationResult:
        """Validate a complete set of preferences"""
        all_errors: List[ValidationIssue] = []
        all_warnings: List[ValidationIssue] = []

        checks = [
            PreferenceValidator.validate_required(preferences),
            PreferenceValidator.validate_dates(preferences.start_date, preferences.end_date, max_duration_days),
            PreferenceValidator.validate_budget(preferences.budget_min, preferences.budget_max, preferences.currency),
            PreferenceValidator.validate_travelers(
                preferences.adults, preferences.children, preferences.infants, max_group_size
            ),
            PreferenceValidator.validate_special_requirements(preferences.dietary_restrictions),
        ]
        for result in checks:
            all_errors.extend(result['errors'])
            all_warnings.extend(result.get('warnings', []))

        return ValidationResult(
            valid=len(all_errors) == 0,
            errors=all_errors,
            warnings=all_warnings
        )
