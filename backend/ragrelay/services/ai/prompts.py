"""
System prompts for the classifier and the category-specific RAG answers.

Date policy used by the classifier prompt:
- explicit dates are passed through unchanged
- a month-only mention covers the first to the last day of that month
- weeks are ISO weeks starting on Monday; a week mention covers the working
  days Monday to Friday ("this week" = the week containing the reference
  date, "next week" = the week after)
- no time expression at all means the query is generic

The worked examples in the classifier prompt are computed from the
reference date so the model sees the policy applied to real calendar dates.
"""
import calendar
from datetime import date, timedelta
from typing import Dict, Optional

from ragrelay.services.ai.schema import GENERIC_QUERY, LEAVE_REQUEST

DATE_FORMAT = "%Y/%m/%d"


def format_range(start: date, end: date) -> str:
    return f"{start.strftime(DATE_FORMAT)}-{end.strftime(DATE_FORMAT)}"


def month_range(year: int, month: int) -> str:
    last_day = calendar.monthrange(year, month)[1]
    return format_range(date(year, month, 1), date(year, month, last_day))


def week_range(reference: date, weeks_ahead: int = 0) -> str:
    """Monday-Friday range of the ISO week ``weeks_ahead`` weeks after ``reference``."""
    monday = reference - timedelta(days=reference.weekday()) + timedelta(weeks=weeks_ahead)
    return format_range(monday, monday + timedelta(days=4))


def build_classification_prompt(today: date) -> str:
    """Render the classifier system instruction relative to ``today``."""
    year = today.year
    explicit = format_range(date(year, 1, 1), date(year, 1, 10))
    march = month_range(year, 3)
    this_week = week_range(today)
    next_week = week_range(today, weeks_ahead=1)

    return f"""Your task is to classify the user question into either of the two categories: {LEAVE_REQUEST} or {GENERIC_QUERY}.

Today is {calendar.day_name[today.weekday()]}, {today.strftime(DATE_FORMAT)}.

If the user wants to take or apply for leave with a timeline or time information, return the response as JSON with the following format:
{{
    "category": "{LEAVE_REQUEST}",
    "dates": "yyyy/mm/dd-yyyy/mm/dd"
}}

For all other queries, return the response as JSON as follows:
{{
    "category": "{GENERIC_QUERY}"
}}

Rules:
1. If the user does not provide any time information, classify the question as {GENERIC_QUERY}.
2. If the category is {LEAVE_REQUEST}:
   a. if the user gives exact dates, use them as they are.
   b. if the user only mentions months, fill the dates as "[first day of the month]-[last day of the month]".
   c. if the user only mentions a week, weeks start on Monday: fill the dates as "[Monday of that week]-[Friday of that week]".
3. Respond with the JSON object only.

EXAMPLES:

user input: Can I take leave between January 1 to January 10?
response: {{"category": "{LEAVE_REQUEST}", "dates": "{explicit}"}}

user input: What is the maternity leave policy?
response: {{"category": "{GENERIC_QUERY}"}}

user input: Can I take leave in March?
response: {{"category": "{LEAVE_REQUEST}", "dates": "{march}"}}

user input: Can I take leave this week?
response: {{"category": "{LEAVE_REQUEST}", "dates": "{this_week}"}}

user input: Can I take leave next week?
response: {{"category": "{LEAVE_REQUEST}", "dates": "{next_week}"}}

user input: Can I take leave?
response: {{"category": "{GENERIC_QUERY}"}}
"""


HR_REQUEST_PROMPT = """You are a chatbot. Answer the user question based on the HR policy, delimited by triple backticks.

Rules:
1. Ask follow up questions if you need additional information from the user to answer the question.
2. Be formal in your response.
3. Keep the answers concise.
"""

GENERIC_REQUEST_PROMPT = (
    "You are a chatbot. Answer the user question based only on the context, "
    "delimited by triple backticks\n "
)

CATEGORY_PROMPTS: Dict[str, str] = {
    LEAVE_REQUEST: HR_REQUEST_PROMPT,
    GENERIC_QUERY: GENERIC_REQUEST_PROMPT,
}


def prompt_for_category(category: str, dates: Optional[str] = None) -> str:
    """
    Select the answer instruction for a classified query.

    Raises:
        KeyError for an unknown category (the classifier never produces one).
    """
    prompt = CATEGORY_PROMPTS[category]
    if category == LEAVE_REQUEST and dates:
        prompt += f"4. The user is asking about leave for the period {dates} (yyyy/mm/dd-yyyy/mm/dd).\n"
    return prompt
