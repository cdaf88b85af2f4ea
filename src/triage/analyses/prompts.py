"""Prompt templates for digest generation and every analysis kind.

Each builder renders one chunk of records into a single prompt that asks for
a JSON object matching the kind's response model in
triage.analyses.responses. Bodies and comments are truncated so a full
chunk fits comfortably in the context window.
"""

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime

from ..store.models import IssueComment, IssueRecord, as_utc, utc_now

__all__ = [
    "build_digest_prompt",
    "build_done_prompt",
    "build_duplicates_prompt",
    "build_good_first_issue_prompt",
    "build_labels_prompt",
    "build_missing_info_prompt",
    "build_needs_response_prompt",
    "build_priority_prompt",
    "build_quality_prompt",
    "build_recurring_prompt",
    "build_security_prompt",
    "build_stale_prompt",
    "days_since",
    "format_comments",
]

ISSUE_SEPARATOR = "\n\n---\n\n"

JSON_ONLY = "Respond ONLY with valid JSON, no markdown and no explanation:"


def days_since(moment: datetime, now: datetime | None = None) -> int:
    """Whole days elapsed since moment."""
    return max(0, (as_utc(now or utc_now()) - as_utc(moment)).days)


def format_comments(
    comments: Sequence[IssueComment],
    max_comments: int = 10,
    max_chars_per_comment: int = 500,
    max_total_chars: int = 3000,
    org_members: Iterable[str] = (),
) -> str:
    """Render the most recent comments as compact one-line entries.

    Comments authored by org members are tagged [ORG]. Returns an empty
    string when there are no comments.
    """
    if not comments:
        return ""

    org = {m.lower() for m in org_members}
    lines = ["Comments (most recent):"]
    total = len(lines[0])

    for comment in comments[-max_comments:]:
        body = comment.body
        if len(body) > max_chars_per_comment:
            body = body[:max_chars_per_comment] + "..."
        body = " ".join(body.split())
        author = comment.author + (" [ORG]" if comment.author.lower() in org else "")
        line = f"@{author} ({comment.created_at.date().isoformat()}): {body}"
        if total + len(line) + 1 > max_total_chars:
            break
        lines.append(line)
        total += len(line) + 1

    return "\n".join(lines)


def _labels(record: IssueRecord) -> str:
    return f" [{', '.join(record.labels)}]" if record.labels else ""


def _with_comments(text: str, record: IssueRecord, **options) -> str:
    section = format_comments(record.comments, **options)
    return f"{text}\n{section}" if section else text


def _compact(record: IssueRecord) -> str:
    """One-line digest rendering used for knowledge bases."""
    d = record.digest
    if d is None:
        return f"#{record.number} {record.title}"
    return (
        f"#{record.number} [{d.category}] {d.affected_area} | {d.summary} "
        f"| kw: {', '.join(d.keywords)}"
    )


# =============================================================================
# DIGEST
# =============================================================================

DIGEST_PROMPT = """Produce a compact digest for each GitHub issue below.

For every issue return:
- summary: one line, at most 100 characters
- category: one of bug, feature, docs, chore, question, other
- affected_area: the part of the system affected (e.g. "auth", "API", "UI", "build")
- keywords: 3-5 keywords useful for similarity matching

ISSUES:
{issues}

{json_only}
{{
  "digests": [
    {{"number": 123, "summary": "...", "category": "bug", "affected_area": "...", "keywords": ["...", "..."]}}
  ]
}}"""


def build_digest_prompt(records: Sequence[IssueRecord]) -> str:
    issues = ISSUE_SEPARATOR.join(
        f"#{r.number}: {r.title}\n{r.body[:2000]}" for r in records
    )
    return DIGEST_PROMPT.format(issues=issues, json_only=JSON_ONLY)


# =============================================================================
# DETECTION
# =============================================================================

DUPLICATES_PROMPT = """KNOWLEDGE BASE (all open issues, compact digest format):
{knowledge_base}

CANDIDATES (check each against the knowledge base):
{candidates}

A candidate is a duplicate when it describes the same underlying problem or
request as a knowledge base issue, even if worded differently.

Rules:
- A candidate can only duplicate a KNOWLEDGE BASE issue, never itself
- The original is the lower-numbered issue
- Include only candidates that ARE duplicates; omit the rest
- Only include matches with confidence >= {min_confidence:.2f}; when unsure, omit

{json_only}
{{
  "duplicates": [
    {{"number": 456, "duplicate_of": 123, "confidence": 0.95, "reason": "One sentence on why these are the same issue"}}
  ]
}}"""


def build_duplicates_prompt(
    candidates: Sequence[IssueRecord],
    knowledge_base: Sequence[IssueRecord],
    min_confidence: float,
) -> str:
    return DUPLICATES_PROMPT.format(
        knowledge_base="\n".join(_compact(r) for r in knowledge_base),
        candidates="\n".join(_compact(r) for r in candidates),
        min_confidence=min_confidence,
        json_only=JSON_ONLY,
    )


DONE_PROMPT = """These open GitHub issues are referenced by merged pull requests.
Decide for each whether the merged PR(s) resolved it.

Confidence guide:
- 0.90-1.00: a PR explicitly fixes this issue ("Fix #123")
- 0.70-0.89: a PR is clearly related and very likely resolves it
- below 0.70: tangential, or only partially addresses the issue

Rules:
- is_done=true only when confidence >= 0.70
- Consider all merged PRs together; several may jointly resolve an issue
- When is_done=true, draft a polite closing comment naming the PR number(s);
  otherwise draft_comment is an empty string

ISSUES WITH MERGED PR REFERENCES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 243, "is_done": true, "confidence": 0.95, "reason": "PR #281 fixes exactly this", "draft_comment": "Resolved by #281, closing."}}
  ]
}}"""


def build_done_prompt(
    candidates: Sequence[IssueRecord],
    merged_prs: Mapping[int, Sequence[Mapping[str, object]]],
) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        prs = "\n".join(
            f"  - PR #{pr['number']}: {pr.get('title', '')}" for pr in merged_prs.get(r.number, [])
        )
        header = f"#{r.number}{_labels(r)} - {r.title}"
        if d is not None:
            header += f"\nCategory: {d.category} | Area: {d.affected_area}\nSummary: {d.summary}"
        blocks.append(f"{header}\nMerged PRs referencing this issue:\n{prs}")
    return DONE_PROMPT.format(issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY)


# =============================================================================
# ENRICHMENT
# =============================================================================

PRIORITY_PROMPT = """Assign a priority to each GitHub issue based on impact and urgency.

- critical: data loss, security vulnerability, production down, most users affected
- high: regression, broken core functionality, significant user segment affected
- medium: non-critical bug or UX issue affecting a subset of users
- low: enhancement, cosmetic problem, edge case

Rules:
- Exactly one priority per issue; reserve "critical" for genuine emergencies
- "signals" must cite concrete evidence from the issue text or comments
- Comment and reaction counts are engagement signals

ISSUES:
{issues}

{json_only}
{{
  "priorities": [
    {{"number": 123, "priority": "high", "reason": "Login broken on Safari iOS", "signals": ["broken core feature", "12 reactions"]}}
  ]
}}"""


def build_priority_prompt(candidates: Sequence[IssueRecord]) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        text = (
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Category: {d.category} | Area: {d.affected_area} | Keywords: {', '.join(d.keywords)}\n"
            f"Comments: {r.comment_count} | Reactions: {r.reactions}\n"
            f"Summary: {d.summary}\nBody:\n{r.body[:2000]}"
        )
        blocks.append(_with_comments(text, r))
    return PRIORITY_PROMPT.format(issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY)


SECURITY_PROMPT = """Triage these GitHub issues for security implications, including issues
not labeled as security problems.

Look for: authentication bypass, session hijacking, privilege escalation,
injection (SQL, command, path traversal, XSS, template), data exposure,
credentials in logs, and vulnerable dependencies.

Rules:
- Read the full body; security details are often subtle
- confidence reflects how clearly the issue describes a security problem (0.0-1.0)
- is_security_related=true only when confidence >= 0.70
- For non-security issues category, severity and explanation may be empty
- severity is one of critical, high, medium, low

ISSUES:
{issues}

{json_only}
{{
  "findings": [
    {{"number": 178, "is_security_related": true, "confidence": 0.94, "category": "data exposure", "severity": "high", "explanation": "API key echoed in error responses"}}
  ]
}}"""


def build_security_prompt(candidates: Sequence[IssueRecord]) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        blocks.append(
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Category: {d.category} | Area: {d.affected_area} | Keywords: {', '.join(d.keywords)}\n"
            f"Summary: {d.summary}\nFull body:\n{r.body[:4000]}"
        )
    return SECURITY_PROMPT.format(issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY)


STALE_PROMPT = """Triage these stale GitHub issues (no activity for a long time).

Pick one action per issue:
- "close-resolved": likely fixed elsewhere or no longer reproducible; draft a polite closing comment
- "close-wontfix": outdated, superseded or no longer relevant; draft a comment explaining why
- "label-stale": possibly still valid; draft a comment asking for confirmation and noting
  closure in {close_days} days without activity
- "keep-open": clearly still relevant; draft_comment is an empty string

Be conservative: prefer "label-stale" over closing, and "keep-open" when comments
show active discussion. Reference related closed issues by number.
{closed_section}
STALE ISSUES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 42, "action": "label-stale", "reason": "120 days idle, unclear if reproducible", "draft_comment": "Is this still relevant?"}}
  ]
}}"""


def build_stale_prompt(
    candidates: Sequence[IssueRecord],
    closed: Sequence[IssueRecord],
    close_days: int,
    now: datetime | None = None,
) -> str:
    closed_section = ""
    if closed:
        closed_lines = "\n".join(
            f"  #{r.number} - {r.title} ({r.digest.summary if r.digest else r.title})"
            for r in closed
        )
        closed_section = f"\nRECENTLY CLOSED ISSUES (for cross-referencing):\n{closed_lines}\n"

    blocks = []
    for r in candidates:
        d = r.digest
        text = (
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Category: {d.category} | Area: {d.affected_area} | "
            f"Days inactive: {days_since(r.updated_at, now)}\n"
            f"Summary: {d.summary}\n"
            f"Comments: {r.comment_count} | Reactions: {r.reactions}"
        )
        blocks.append(
            _with_comments(text, r, max_comments=5, max_chars_per_comment=300, max_total_chars=2000)
        )
    return STALE_PROMPT.format(
        close_days=close_days,
        closed_section=closed_section,
        issues=ISSUE_SEPARATOR.join(blocks),
        json_only=JSON_ONLY,
    )


QUALITY_PROMPT = """Check these GitHub issues for submission quality.

- "spam": promotional or completely off-topic (suggested_label "invalid")
- "vague": nothing actionable, e.g. "it doesn't work" (suggested_label "needs-info")
- "test": accidental or test submission, e.g. "asdf" (suggested_label "invalid")
- "wrong-language": not in the repository's primary language (suggested_label "invalid")
- "ok": legitimate and actionable (suggested_label null)

Be conservative: when in doubt, "ok". Short but clear reports and brief
feature requests are fine.

ISSUES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 301, "quality": "spam", "reason": "Promotional links", "suggested_label": "invalid"}}
  ]
}}"""


def build_quality_prompt(candidates: Sequence[IssueRecord]) -> str:
    blocks = [
        f"#{r.number}{_labels(r)} - {r.title}\nAuthor: @{r.author}\nBody:\n{r.body[:3000]}"
        for r in candidates
    ]
    return QUALITY_PROMPT.format(issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY)


MISSING_INFO_PROMPT = """Decide whether these bug reports are missing information needed to
reproduce and fix them.

What is needed depends on the area: database issues need schema, query and
version; UI issues need browser, OS and steps; API issues need endpoint,
request and response; crashes need the full error and stack trace. Every bug
needs reproduction steps and expected vs actual behavior.

If the body or the comments already provide what is needed, set
has_missing_info=false. Otherwise list missing_fields and write a short,
specific, polite comment asking for exactly those (3-5 bullet points).

ISSUES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 123, "has_missing_info": true, "missing_fields": ["reproduction steps"], "suggested_comment": "Thanks! Could you share..."}}
  ]
}}"""


def build_missing_info_prompt(candidates: Sequence[IssueRecord]) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        text = (
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Category: {d.category} | Area: {d.affected_area}\nBody:\n{r.body[:3000]}"
        )
        blocks.append(_with_comments(text, r))
    return MISSING_INFO_PROMPT.format(issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY)


NEEDS_RESPONSE_PROMPT = """Decide whether these GitHub issues need a response from a maintainer.

{org_line}

Classify each as:
- "new-issue": no comments at all, needs initial triage
- "needs-response": the latest meaningful activity is from a community user and
  no org member has addressed it
- "responded": an org member gave a meaningful answer to the latest concern

Rules:
- Bot comments do not count as maintainer responses
- Comments tagged [ORG] are from org members
- "Thanks for reporting" without substance still needs a real response
- If an org member asked for info and the user provided it, it needs a response again
- Issues authored by an org member count as "responded"

ISSUES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 123, "status": "needs-response", "reason": "Follow-up question unanswered for 3 days"}}
  ]
}}"""


def build_needs_response_prompt(
    candidates: Sequence[IssueRecord], org_members: Sequence[str]
) -> str:
    org = {m.lower() for m in org_members}
    org_line = (
        f"Org members / maintainers: {', '.join(org_members)}"
        if org_members
        else "No org member list available; use author and collaborator context clues."
    )
    blocks = []
    for r in candidates:
        d = r.digest
        author = r.author + (" [ORG]" if r.author.lower() in org else "")
        text = (
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Author: {author} | Category: {d.category} | Area: {d.affected_area}\n"
            f"Comment count: {r.comment_count}\nBody:\n{r.body[:2000]}"
        )
        section = format_comments(r.comments, org_members=org_members) or "(no comments)"
        blocks.append(f"{text}\n{section}")
    return NEEDS_RESPONSE_PROMPT.format(
        org_line=org_line, issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY
    )


LABELS_PROMPT = """Suggest labels for these GitHub issues using ONLY the repository's existing labels.

AVAILABLE LABELS:
{labels}

Rules:
- Suggest only labels that are not already on the issue
- Use exact names from AVAILABLE LABELS; never invent labels
- Assign high/critical priority labels only for data loss, security, crashes or outages
- If the issue already has the right labels, return an empty "suggested" array

ISSUES:
{issues}

{json_only}
{{
  "labels": [
    {{"number": 123, "suggested": ["bug", "area: auth"], "reason": "Authentication failure in login"}}
  ]
}}"""


def build_labels_prompt(candidates: Sequence[IssueRecord], repo_labels: Sequence[str]) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        current = ", ".join(r.labels) if r.labels else "(none)"
        blocks.append(
            f"#{r.number} - {r.title}\nCurrent labels: {current}\n"
            f"Category: {d.category} | Area: {d.affected_area} | Keywords: {', '.join(d.keywords)}\n"
            f"Summary: {d.summary}\nBody:\n{r.body[:2000]}"
        )
    return LABELS_PROMPT.format(
        labels="\n".join(f"  - {label}" for label in repo_labels),
        issues=ISSUE_SEPARATOR.join(blocks),
        json_only=JSON_ONLY,
    )


GOOD_FIRST_ISSUE_PROMPT = """Decide which of these GitHub issues suit a first-time contributor.

A good first issue is self-contained, has clear acceptance criteria, needs no
architectural decisions, takes a newcomer less than a day, and touches an
approachable area. Reject issues spanning several interconnected systems,
involving concurrency, performance or security-sensitive code, or that are
vague or need significant refactoring.

For suitable issues give a reason, a code_hint on where to start, and
estimated_complexity: trivial (< 1 hour), small (a few hours) or medium (half a day).
For unsuitable issues set is_good_first_issue=false.

ISSUES:
{issues}

{json_only}
{{
  "results": [
    {{"number": 156, "is_good_first_issue": true, "reason": "Isolated validation logic", "code_hint": "See src/forms/", "estimated_complexity": "small"}}
  ]
}}"""


def build_good_first_issue_prompt(candidates: Sequence[IssueRecord]) -> str:
    blocks = []
    for r in candidates:
        d = r.digest
        blocks.append(
            f"#{r.number}{_labels(r)} - {r.title}\n"
            f"Category: {d.category} | Area: {d.affected_area} | Keywords: {', '.join(d.keywords)}\n"
            f"Summary: {d.summary}\nBody:\n{r.body[:2000]}"
        )
    return GOOD_FIRST_ISSUE_PROMPT.format(
        issues=ISSUE_SEPARATOR.join(blocks), json_only=JSON_ONLY
    )


RECURRING_PROMPT = """Decide whether these open questions were already answered in closed issues.

KNOWLEDGE BASE (closed issues):
{knowledge_base}

Rules:
- Mark is_recurring=true only when a closed issue genuinely answers the question
- similar_closed_issues lists those closed issue numbers
- suggested_response must point to the closed issue(s); never invent an answer
- When nothing matches, is_recurring=false and similar_closed_issues is empty

OPEN QUESTIONS:
{issues}

{json_only}
{{
  "questions": [
    {{"number": 123, "is_recurring": true, "similar_closed_issues": [45], "suggested_response": "Answered in #45.", "confidence": 0.85}}
  ]
}}"""


def build_recurring_prompt(
    candidates: Sequence[IssueRecord], closed: Sequence[IssueRecord]
) -> str:
    knowledge_base = "\n".join(
        f"  #{r.number} - {r.title} | Area: {r.digest.affected_area} | Summary: {r.digest.summary}"
        for r in closed
        if r.digest is not None
    )
    blocks = []
    for r in candidates:
        d = r.digest
        blocks.append(
            f"#{r.number} - {r.title}\n"
            f"Area: {d.affected_area} | Keywords: {', '.join(d.keywords)}\n"
            f"Summary: {d.summary}\nBody:\n{r.body[:2000]}"
        )
    return RECURRING_PROMPT.format(
        knowledge_base=knowledge_base,
        issues=ISSUE_SEPARATOR.join(blocks),
        json_only=JSON_ONLY,
    )
