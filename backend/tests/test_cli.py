import json
from unittest.mock import patch

import pytest

from wikihub import cli
from wikihub.core.sources import Source
from wikihub.models.pending_edit import EditStatus
from wikihub.services import moderation


@pytest.fixture
def run_cli(db, monkeypatch):
    monkeypatch.setattr(cli, "SessionLocal", lambda: db)

    def _run(*argv):
        return cli.main(list(argv))

    return _run


def _edit(db, article):
    return moderation.create_pending_edit(db, article.id, "<p>Better.</p>", "203.0.113.1", reason="typo")


class TestCli:

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_status_prints_json(self, run_cli, make_article, capsys):
        make_article()

        assert run_cli("status") == 0

        summary = json.loads(capsys.readouterr().out)
        assert summary["total_articles"] == 1

    def test_edits_list_and_reject(self, run_cli, db, make_article, capsys):
        edit_id = _edit(db, make_article()).id

        assert run_cli("edits", "list") == 0
        assert "osrs/Abyssal_whip" in capsys.readouterr().out

        assert run_cli("edits", "reject", str(edit_id), "--note", "no source") == 0
        assert capsys.readouterr().out.strip() == f"Edit {edit_id} rejected"
        assert moderation.get_pending_edit(db, edit_id).status == EditStatus.REJECTED

    def test_domain_error_exits_nonzero(self, run_cli, capsys):
        assert run_cli("edits", "approve", "999") == 1
        assert "not_found" in capsys.readouterr().err

    def test_sync_is_queued_by_default(self, run_cli, capsys):
        with patch.object(cli.sync, "enqueue_sync", return_value="task-3") as enqueue:
            assert run_cli("sync", "machines", "--limit", "20") == 0

        enqueue.assert_called_once_with(Source.VINTAGE_MACHINERY, full_sync=False, resume_from=None, limit=20)
        assert "task-3" in capsys.readouterr().out

    def test_embed_without_ollama(self, run_cli, monkeypatch, capsys):
        monkeypatch.setattr(cli, "get_embedder", lambda: None)

        assert run_cli("embed") == 1
        assert "not configured" in capsys.readouterr().err
