"""Jira webhook payload, reduced to the fields subscriptions filter on."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

JIRA_WEBHOOK_EVENT_ISSUE_CREATED = "jira:issue_created"
JIRA_WEBHOOK_EVENT_ISSUE_UPDATED = "jira:issue_updated"
JIRA_WEBHOOK_EVENT_ISSUE_DELETED = "jira:issue_deleted"


class _Permissive(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class JiraProject(_Permissive):
    key: str = ""
    name: str = ""


class JiraIssueType(_Permissive):
    id: str = ""
    name: str = ""


class JiraIssueFields(_Permissive):
    summary: str = ""
    project: JiraProject = Field(default_factory=JiraProject)
    issue_type: JiraIssueType = Field(default_factory=JiraIssueType, alias="issuetype")


class JiraIssue(_Permissive):
    id: str = ""
    key: str = ""
    fields: JiraIssueFields = Field(default_factory=JiraIssueFields)


class JiraUser(_Permissive):
    name: str = ""
    display_name: str = Field(default="", alias="displayName")


class JiraWebhook(_Permissive):
    webhook_event: str = Field(alias="webhookEvent")
    issue: JiraIssue = Field(default_factory=JiraIssue)
    user: JiraUser = Field(default_factory=JiraUser)

    def summary_line(self) -> str:
        """One-line plain text description used as the post body."""
        who = self.user.display_name or self.user.name or "Someone"
        action = self.webhook_event.removeprefix("jira:").replace("_", " ")
        text = f"{who}: {action} {self.issue.key}".rstrip()
        if self.issue.fields.summary:
            text += f" \"{self.issue.fields.summary}\""
        return text
