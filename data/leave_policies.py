"""
Vacation policy data and development fixtures.
In production employees come from the Employees worksheet.
"""

# Entitlement per work year unless an employee carries an override
ANNUAL_QUOTA_DAYS = 24

# Months after the first working day before any vacation can be requested
ELIGIBILITY_MONTHS = 3

LEAVE_POLICIES = {
    "regular": {
        "min_days": 1,
        "max_days": 7,
        "reason_required": False,
        "pm_review": True,
        "description": "Planned vacation, reviewed by the PM (if assigned) and then HR",
    },
    "emergency": {
        "min_days": 1,
        "max_days": None,
        "reason_required": True,
        "pm_review": False,
        "description": "Urgent vacation, sent straight to HR with a mandatory reason",
    },
}

# Mock employee directory (in production, this is the Employees worksheet)
MOCK_EMPLOYEES = {
    "1001": {
        "employee_id": "1001",
        "full_name": "Olena Kovalenko",
        "department": "Marketing",
        "team": "PPC",
        "sub_team": None,
        "manager_id": "1003",
        "first_working_day": "2023-02-01",
        "role": "employee",
    },
    "1002": {
        "employee_id": "1002",
        "full_name": "Andrii Shevchenko",
        "department": "Design",
        "team": "Motion Designer",
        "sub_team": None,
        "manager_id": None,
        "first_working_day": "2022-09-15",
        "role": "employee",
    },
    "1003": {
        "employee_id": "1003",
        "full_name": "Iryna Bondar",
        "department": "Marketing",
        "team": "PPC",
        "sub_team": None,
        "manager_id": None,
        "first_working_day": "2021-04-12",
        "role": "pm",
    },
    "1004": {
        "employee_id": "1004",
        "full_name": "Maria Tkachenko",
        "department": "HR",
        "team": "HR",
        "sub_team": None,
        "manager_id": None,
        "first_working_day": "2020-01-20",
        "role": "hr",
    },
    "1005": {
        "employee_id": "1005",
        "full_name": "Taras Melnyk",
        "department": "CEO",
        "team": "CEO",
        "sub_team": None,
        "manager_id": None,
        "first_working_day": "2019-06-01",
        "role": "ceo",
    },
}


def get_leave_policy_data(kind: str):
    """Get leave policy for a request kind."""
    return LEAVE_POLICIES.get(kind)
