from .base import BaseFetcher, CompanyFetcher
from .email_alerts import EmailFetcher
from .greenhouse import GreenhouseFetcher
from .lever import LeverFetcher
from .smartrecruiters import SmartRecruitersFetcher
from .workday import WorkdayFetcher

__all__ = [
    "BaseFetcher",
    "CompanyFetcher",
    "EmailFetcher",
    "GreenhouseFetcher",
    "LeverFetcher",
    "SmartRecruitersFetcher",
    "WorkdayFetcher",
]
