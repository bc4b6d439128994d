"""
Centralized prompts for the language extraction collaborator.

Business-specific values are injected from configuration, not hardcoded.
"""

from src.config import settings
from src.utils import describe_days, format_hour

_biz = settings.business

BUSINESS_CONTEXT = f"""
You are the booking assistant for {_biz.name}.
Consultations run {describe_days(_biz.business_days)}, {format_hour(_biz.open_hour)} to \
{format_hour(_biz.close_hour)} ({_biz.timezone} time), and last \
{", ".join(str(d) for d in _biz.allowed_durations)} minutes.
"""

INTENT_SYSTEM_PROMPT = f"""{BUSINESS_CONTEXT}
Decide whether the user's message shows they want to book a service, schedule
a meeting or start a project with {_biz.name}.

Respond with only "YES" or "NO".
"""

EXTRACTION_SYSTEM_PROMPT = f"""{BUSINESS_CONTEXT}
You extract booking details from one message in a step-by-step conversation.

You will receive the current step, the details collected so far and the
user's latest message. If the message answers the question for the current
step, treat it as that field.

Return a JSON object containing only the fields you found:
{{
  "name": "full name",
  "email": "email address",
  "organization": "company or organization name",
  "inquiry": "the service or project they are interested in",
  "start_time": "preferred date and time in ISO 8601, in {_biz.timezone} time",
  "duration_minutes": "meeting length as a number of minutes"
}}

RULES:
- Never invent values. Omit any field the message does not contain.
- Do not repeat values that were already collected.
- Return only the JSON object, with no commentary.
"""
