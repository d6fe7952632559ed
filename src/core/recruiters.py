"""
Recruitment agency detection.

Agency postings say nothing about the hiring company, so they are dropped
before results are counted.
"""

import re
from typing import Optional

AGENCY_NAME_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"recruit",
        r"staffing",
        r"talent\s*(acquisition|partner|solution)",
        r"personnel",
        r"resourcing",
        r"employment\s*(agency|service)",
        # Known UK agencies
        r"\bhays\b",
        r"reed\s*employment",
        r"michael\s*page",
        r"robert\s*half",
        r"randstad",
        r"adecco",
        r"manpower",
        r"kelly\s*services",
        r"page\s*group",
        r"spencer\s*ogden",
        r"la\s*fosse",
        r"goodman\s*masson",
        r"harvey\s*nash",
        r"amber\s*employment",
        r"blue\s*arrow",
        r"pertemps",
        r"search\s*consultancy",
    )
]

AGENCY_DESCRIPTION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"on\s*behalf\s*of",
        r"our\s*client",
        r"confidential\s*client",
        r"client\s*of\s*ours",
        r"we\s*are\s*recruiting",
        r"acting\s*on\s*behalf",
    )
]


def is_recruitment_agency(company_name: str, description: Optional[str] = None) -> bool:
    """True if the employer name, or the posting text, reads like an agency."""
    if any(p.search(company_name) for p in AGENCY_NAME_PATTERNS):
        return True
    if description and any(p.search(description) for p in AGENCY_DESCRIPTION_PATTERNS):
        return True
    return False
