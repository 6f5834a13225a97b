"""
Custom exceptions for Attune
"""
from rest_framework.exceptions import APIException


class UnknownElicitationQuestion(APIException):
    """Raised when an elicitation answer references a question id outside the bank"""
    status_code = 400
    default_detail = 'Unknown elicitation question'
    default_code = 'unknown_elicitation_question'


class InsightNotFound(APIException):
    """Raised when an insight id is not in the caller's session"""
    status_code = 404
    default_detail = 'Insight not found'
    default_code = 'insight_not_found'


class InvalidInsightTransition(APIException):
    """Raised when an insight is moved to a state its lifecycle does not allow"""
    status_code = 409
    default_detail = 'Invalid insight state transition'
    default_code = 'invalid_insight_transition'
