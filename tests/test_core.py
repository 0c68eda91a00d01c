import asyncio

import pytest

from aico.config import Config
from aico.core import AicoWorkflow, CommitResult
from aico.exceptions import ValidationError
from aico.models import CommitMessage, NameStatusEntry, NumStatEntry
from aico.providers.base import Completion

PATCH = """diff --git a/src/app.py b/src/app.py
index 1111111..2222222 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,2 +1,3 @@
 import os
+import sys
 x = 1
"""


class FakeGit:
    def __init__(self, staged=PATCH, working=False, merging=False):
        self.staged = staged
        self.working = working
        self.merging = merging
        self.commits = []
        self.branches = []
        self.staged_all = False

    def has_staged_changes(self):
        return bool(self.staged)

    def has_working_changes(self):
        return self.working

    def stage_all(self):
        self.staged_all = True
        self.staged = PATCH

    def get_staged_diff(self):
        return self.staged

    def get_staged_name_status(self):
        return [NameStatusEntry("M", "src/app.py")] if self.staged else []

    def get_staged_num_stat(self):
        return [NumStatEntry(1, 0, "src/app.py")] if self.staged else []

    def get_staged_patch_for_paths(self, paths):
        return self.staged

    def is_merging(self):
        return self.merging

    def get_branch_name(self):
        return "feat/login"

    def get_merge_heads(self):
        return {"target": "main", "source": "feat/login"} if self.merging else {"target": "main"}

    def get_recent_commit_subjects(self, count=5):
        return []

    def get_default_base_branch(self):
        return "main"

    def get_branch_diff(self, base):
        return PATCH

    def get_branch_name_status(self, base):
        return [NameStatusEntry("M", "src/app.py")]

    def get_branch_num_stat(self, base):
        return [NumStatEntry(1, 0, "src/app.py")]

    def get_branch_patch_for_paths(self, base, paths):
        return PATCH

    def get_commit_subjects_between(self, base, head="HEAD"):
        return ["feat(login): accept sso tokens"]

    def commit(self, message):
        self.commits.append(message)

    def create_branch(self, name):
        self.branches.append(name)


class FakeLLM:
    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.closed = False
        self.prompts = []

    async def complete(self, messages, model=None, max_tokens=None, temperature=None):
        self.prompts.append(messages[-1]["content"])
        return Completion(self.outputs.pop(0), "stop")

    async def aclose(self):
        self.closed = True


def _workflow(git, *outputs):
    return AicoWorkflow(Config(), git_repo=git, llm_client=FakeLLM(*outputs))


def test_nothing_to_commit_raises():
    workflow = _workflow(FakeGit(staged=""))

    with pytest.raises(ValidationError, match="No changes detected"):
        workflow.prepare_staged_diff()


def test_unstaged_changes_are_staged_by_default():
    git = FakeGit(staged="", working=True)

    diff = _workflow(git).prepare_staged_diff()

    assert git.staged_all
    assert diff.signals.top_files == ("src/app.py",)


def test_no_auto_stage_refuses_unstaged_changes():
    git = FakeGit(staged="", working=True)

    with pytest.raises(ValidationError, match="No staged changes found"):
        _workflow(git).prepare_staged_diff(auto_stage=False)
    assert not git.staged_all


def test_run_commit_commits_generated_message():
    git = FakeGit()
    workflow = _workflow(git, "fix(app): import sys for exit codes")

    result = asyncio.run(workflow.run_commit())

    assert result.committed
    assert git.commits == ["fix(app): import sys for exit codes"]


def test_dry_run_does_not_commit():
    git = FakeGit()
    workflow = _workflow(git, "fix(app): import sys for exit codes")

    result = asyncio.run(workflow.run_commit(dry_run=True))

    assert not result.committed
    assert git.commits == []


def test_merge_message_skips_the_model():
    git = FakeGit(merging=True)
    workflow = _workflow(git)

    result = asyncio.run(workflow.generate_commit(merge_message=True))

    assert result.merge
    assert result.message == CommitMessage("merge: feat/login into main")
    assert workflow.llm_client.prompts == []


def test_merge_message_requires_merge():
    with pytest.raises(ValidationError, match="No merge in progress"):
        asyncio.run(_workflow(FakeGit()).generate_commit(merge_message=True))


def test_commit_marks_result():
    git = FakeGit()
    result = _workflow(git).commit(CommitResult(CommitMessage("fix: a", "- b")))

    assert result.committed
    assert git.commits == ["fix: a\n\n- b"]


def test_run_branch_creates_branch():
    git = FakeGit()
    workflow = _workflow(git, "feat/add-sso-login")

    name = asyncio.run(workflow.run_branch("add sso login", create=True, with_diff=True))

    assert name == "feat/add-sso-login"
    assert git.branches == ["feat/add-sso-login"]
    assert "Changes summary:" in workflow.llm_client.prompts[0]


def test_run_branch_requires_context():
    with pytest.raises(ValidationError):
        asyncio.run(_workflow(FakeGit()).run_branch("   "))


def test_run_pr_uses_default_base_and_branch_commits():
    body = (
        "feat(login): accept sso tokens\n\n### Summary\nSSO works.\n\n### Changes\n- Accept tokens\n- Map users\n\n"
        "### QA Focus\n- Login: sign in with SSO\n- Login: sign out again"
    )
    workflow = _workflow(FakeGit(), body)

    result = asyncio.run(workflow.run_pr())

    assert result.base_branch == "main"
    assert result.branch_name == "feat/login"
    assert result.message.title == "feat(login): accept sso tokens"
    assert "Base: main" in workflow.llm_client.prompts[0]
    assert "- feat(login): accept sso tokens" in workflow.llm_client.prompts[0]


def test_aclose_closes_llm_client():
    workflow = _workflow(FakeGit())

    asyncio.run(workflow.aclose())

    assert workflow.llm_client.closed
