import threading
from pathlib import Path

from sas_workflow import WorkflowEngine
from sas_workflow.models import Attachments, InvariantStatus, PlanStatus, WorkflowPhase
from sas_workflow.sections import Section, append_entry, body_lines, replace_body, section_body
from sas_workflow.settings import RuntimeSettings
from sas_workflow.state_store import DocumentStore


def make_engine(root: Path, **kwargs) -> WorkflowEngine:  # noqa: ANN003
    params = {"container_id": "Auth Tokens!!", "title": "Auth tokens", "settings": RuntimeSettings()}
    params.update(kwargs)
    return WorkflowEngine(workspace_root=root, **params)


def read_document(engine: WorkflowEngine) -> str:
    path = engine.document_path
    assert path is not None
    return path.read_text(encoding="utf-8")


def test_document_is_created_once_at_sanitized_path(tmp_path: Path) -> None:
    engine = make_engine(tmp_path, initial_task="Rotate signing keys")
    path = engine.ensure_initialized()
    assert path == tmp_path / "sas" / "containers" / "auth-tokens.sas.md"
    assert "- User intent: Rotate signing keys" in read_document(engine)

    path.write_text(read_document(engine) + "\nmanual note\n", encoding="utf-8")
    other = make_engine(tmp_path, title="Another title", initial_task="Different")
    assert other.ensure_initialized() == path
    assert read_document(other).endswith("\nmanual note\n")


def test_fresh_container_has_no_phase_and_no_invariants(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    assert engine.current_phase is None
    assert engine.read_invariants() == []
    report = engine.evaluate_readiness()
    assert report.determinacy == 0.0
    assert report.ready_for_planning is False


def test_record_plan_seeds_unknown_invariants(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("Implement rotation\n\n  Add tests  \n")

    plan = engine.read_plan()
    assert [(item.text, item.status) for item in plan] == [
        ("Implement rotation", PlanStatus.TODO),
        ("Add tests", PlanStatus.TODO),
    ]
    invariants = engine.read_invariants()
    assert [(inv.description, inv.status) for inv in invariants] == [
        ("Plan alignment: Implement rotation", InvariantStatus.UNKNOWN),
        ("Plan alignment: Add tests", InvariantStatus.UNKNOWN),
    ]

    report = engine.evaluate_readiness()
    assert report.determinacy == 0.0
    assert report.has_known_invariant is False
    assert report.ready_for_implementation is True
    assert engine.current_phase is WorkflowPhase.PLANNER


def test_record_plan_replaces_items_without_reseeding(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("first\nsecond")
    first_ids = {item.item_id for item in engine.read_plan()}
    engine.record_plan("third")

    plan = engine.read_plan()
    assert [item.text for item in plan] == ["third"]
    assert plan[0].item_id not in first_ids
    assert len(engine.read_invariants()) == 2


def test_record_plan_without_text_only_logs(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan(None)
    plan_body = section_body(read_document(engine), Section.PLAN)
    assert plan_body.startswith("- [ ] Pending plan items\n")
    assert plan_body.rstrip().endswith(": (no plan text provided)")
    assert engine.read_invariants() == []


def test_authorize_requires_implementer_phase(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("run lint")
    decision = engine.authorize_action("lint")
    assert decision.allowed is False
    assert "implementer phase" in (decision.reason or "")


def test_authorize_requires_textual_match_on_open_step(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("run lint\ndeploy")
    lint, deploy = engine.read_plan()
    assert engine.complete_step(deploy.item_id) is True
    assert engine.current_phase is WorkflowPhase.IMPLEMENTER
    assert engine.evaluate_readiness().ready_for_implementation is True

    allowed = engine.authorize_action("LINT")
    assert allowed.allowed is True
    assert allowed.plan_item_id == lint.item_id
    assert allowed.reason is None

    done = engine.authorize_action("deploy")
    assert done.allowed is False
    assert done.reason == "Tool request is not mapped to any open plan step."

    assert engine.authorize_action("build").allowed is False
    assert engine.authorize_action("").plan_item_id == lint.item_id
    assert engine.authorize_action(" lint ").allowed is False


def test_authorize_first_match_wins(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("run tests for api\nrun tests for ui")
    engine.set_phase(WorkflowPhase.IMPLEMENTER)
    first = engine.read_plan()[0]
    assert engine.authorize_action("run tests").plan_item_id == first.item_id


def test_authorize_denies_when_determinacy_is_low(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("run lint")
    path = engine.document_path
    assert path is not None
    DocumentStore().mutate(path, lambda content: replace_body(content, Section.MECHANICS, "- [violated] Lint is clean"))
    engine.set_phase(WorkflowPhase.IMPLEMENTER)

    decision = engine.authorize_action("lint")
    assert decision.allowed is False
    assert decision.reason == "Determinacy too low or no open plan items to execute."


def test_complete_step_advances_one_invariant(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("Implement rotation\nAdd tests")
    first, second = engine.read_plan()

    assert engine.complete_step(first.item_id, "rotation merged") is True

    plan = engine.read_plan()
    assert [item.status for item in plan] == [PlanStatus.DONE, PlanStatus.TODO]
    assert [item.item_id for item in plan] == [first.item_id, second.item_id]
    assert [inv.status for inv in engine.read_invariants()] == [InvariantStatus.SATISFIED, InvariantStatus.UNKNOWN]
    assert engine.evaluate_readiness().determinacy == 0.5

    log = section_body(read_document(engine), Section.IMPLEMENTATION)
    assert log.rstrip().endswith(f"{first.item_id}: rotation merged")
    assert "[A3 Implementer:plan_step]" in log


def test_complete_step_unknown_id_still_advances_invariant(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("a\nb")
    assert engine.complete_step("S99") is False

    assert [item.status for item in engine.read_plan()] == [PlanStatus.TODO, PlanStatus.TODO]
    assert [inv.status for inv in engine.read_invariants()] == [InvariantStatus.SATISFIED, InvariantStatus.UNKNOWN]
    log = section_body(read_document(engine), Section.IMPLEMENTATION)
    assert log.rstrip().endswith("Completed plan step S99")


def test_ids_survive_line_reordering(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("alpha\nbeta\ngamma")
    ids = {item.text: item.item_id for item in engine.read_plan()}
    path = engine.document_path
    assert path is not None

    def reorder(content: str) -> str:
        lines = body_lines(content, Section.PLAN)
        return replace_body(content, Section.PLAN, "\n".join(reversed(lines)))

    DocumentStore().mutate(path, reorder)
    assert {item.text: item.item_id for item in engine.read_plan()} == ids
    assert engine.complete_step(ids["beta"]) is True
    assert {item.text for item in engine.read_plan() if item.status is PlanStatus.DONE} == {"beta"}


def test_phase_survives_engine_recreation(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_plan("run lint")
    engine.set_phase(WorkflowPhase.IMPLEMENTER)

    restarted = make_engine(tmp_path)
    assert restarted.current_phase is WorkflowPhase.IMPLEMENTER
    assert restarted.authorize_action("lint").allowed is True


def test_set_phase_logs_transitions(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    assert engine.set_phase(WorkflowPhase.PLANNER) is True
    assert engine.set_phase(WorkflowPhase.PLANNER) is False
    assert engine.set_phase(WorkflowPhase.PLANNER, "re-plan requested") is True
    assert engine.set_phase(WorkflowPhase.INSTANTIATOR) is True

    loop_lines = [line for line in body_lines(read_document(engine), Section.TASK_CLAIM) if "[Loop " in line]
    assert len(loop_lines) == 3
    assert loop_lines[0].startswith("- [Loop A2 Planner] ")
    assert loop_lines[1].endswith(" — re-plan requested")
    assert loop_lines[2].startswith("- [Loop A1 Instantiator] ")


def test_record_intent_with_attachments(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_intent("Rotate keys\nand revoke old ones", Attachments(files=["a.py", "b.py"], images=["shot.png"]))
    claim = body_lines(read_document(engine), Section.TASK_CLAIM)
    assert claim[-2].startswith("- [A1 Instantiator] @ ")
    assert claim[-2].endswith(": Rotate keys")
    assert claim[-1] == "  and revoke old ones | files: a.py, b.py | images: shot.png"
    assert engine.current_phase is WorkflowPhase.INSTANTIATOR


def test_record_open_question_and_note(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    engine.record_open_question("Which key store?")
    assert engine.current_phase is WorkflowPhase.INSTANTIATOR
    engine.record_implementation_note("tool")
    assert engine.current_phase is WorkflowPhase.IMPLEMENTER

    document = read_document(engine)
    assert section_body(document, Section.OPEN_QUESTIONS).rstrip().endswith(": Which key store?")
    assert section_body(document, Section.IMPLEMENTATION).rstrip().endswith(": (no details provided)")


def test_prompt_context_is_labeled_and_read_only(tmp_path: Path) -> None:
    engine = make_engine(tmp_path, scope_paths=["src/auth", "tests"])
    before = read_document(engine)
    context = engine.get_prompt_context()
    assert context is not None
    assert context.startswith("SAS container spec: auth-tokens.sas.md\n\n")
    assert "Scope paths: src/auth, tests" in context
    assert "Current SAS phase: unspecified" in context
    assert context.endswith(before.strip())
    assert read_document(engine) == before

    engine.set_phase(WorkflowPhase.PLANNER)
    assert "Current SAS phase: A2 Planner" in (engine.get_prompt_context() or "")


def test_prompt_context_scope_comes_from_existing_header(tmp_path: Path) -> None:
    make_engine(tmp_path, scope_paths=["src/auth"]).ensure_initialized()
    reopened = make_engine(tmp_path, scope_paths=["elsewhere"])
    context = reopened.get_prompt_context()
    assert context is not None
    assert "Scope paths: src/auth" in context
    assert "elsewhere" not in context


def test_prompt_context_truncates_to_budget(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    document = read_document(engine).strip()
    context = engine.get_prompt_context(max_chars=40)
    assert context is not None
    assert context.endswith(f"{document[:40]}\n... (truncated)")

    clamped = engine.get_prompt_context(max_chars=0)
    assert clamped is not None
    assert clamped.endswith(f"\n\n{document[:1]}\n... (truncated)")


def test_storage_failures_fail_closed(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    engine = make_engine(blocker)

    engine.record_intent("ignored")
    engine.record_plan("run lint")
    assert engine.ensure_initialized() is None
    assert engine.read_plan() == []
    assert engine.get_prompt_context() is None
    assert engine.evaluate_readiness().ready_for_implementation is False
    assert engine.authorize_action("lint").allowed is False
    assert engine.complete_step("S1") is False


def test_store_mutate_reports_missing_document(tmp_path: Path) -> None:
    missing = tmp_path / "missing.sas.md"
    assert DocumentStore().mutate(missing, lambda content: content + "x") is False
    assert DocumentStore().read(missing) is None
    assert not missing.exists()


def test_concurrent_appends_are_not_lost(tmp_path: Path) -> None:
    engine = make_engine(tmp_path)
    path = engine.ensure_initialized()
    assert path is not None
    store = DocumentStore()

    def worker(worker_id: int) -> None:
        for idx in range(10):
            store.mutate(path, lambda content, entry=f"- q{worker_id}-{idx}": append_entry(content, Section.OPEN_QUESTIONS, entry))

    threads = [threading.Thread(target=worker, args=(worker_id,)) for worker_id in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = [line for line in body_lines(read_document(engine), Section.OPEN_QUESTIONS) if line.startswith("- q")]
    assert len(entries) == 40
    for worker_id in range(4):
        mine = [line for line in entries if line.startswith(f"- q{worker_id}-")]
        assert mine == [f"- q{worker_id}-{idx}" for idx in range(10)]
