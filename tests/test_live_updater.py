import asyncio

import pytest

from cotizador.models.schemas import DocumentNode, DynamicSectionUpdate, Section
from cotizador.services.docs_client import document_nodes
from cotizador.services.errors import RemoteDocumentError
from cotizador.services.live_updater import (
    DocumentLockRegistry,
    LiveSectionUpdater,
    UpdaterState,
    find_section,
    plan_section_edit,
    update_dynamic_sections,
)
from cotizador.services.section_parser import parse_nodes

THREE_SECTIONS = "1. Intro\nhello\n2. Plan [DINÁMICO]\nold\n3. Costs\nfixed\n"


def _run(api, doc_id, updates, **kw):
    kw.setdefault("refetch_delay", 0)
    return asyncio.run(update_dynamic_sections(api, doc_id, updates, **kw))


def _sections(api, doc_id):
    return parse_nodes(document_nodes(asyncio.run(api.get_document(doc_id))))


def test_paragraph_offsets(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    nodes = document_nodes(asyncio.run(docs_api.get_document("d")))
    assert [(n.start_index, n.end_index) for n in nodes] == [
        (1, 10), (10, 16), (16, 35), (35, 39), (39, 48), (48, 54),
    ]
    assert [s.start_index for s in parse_nodes(nodes)] == [1, 16, 39]


def test_update_middle_section_leaves_neighbours(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    before = {s.order: s for s in _sections(docs_api, "d")}

    report = _run(docs_api, "d", [DynamicSectionUpdate(order=2, title="Plan", content="new body\n")])

    assert report.updated == [2] and report.skipped == [] and report.batches == 1
    assert docs_api.text("d") == "1. Intro\nhello\n2. Plan [DINÁMICO]\nnew body\n3. Costs\nfixed\n"
    after = {s.order: s for s in _sections(docs_api, "d")}
    for order in (1, 3):
        assert (after[order].title, after[order].content) == (before[order].title, before[order].content)
    assert after[2].content == "new body"


def test_last_section_keeps_final_newline(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    _run(docs_api, "d", [DynamicSectionUpdate(order=3, content="total 10")])
    assert docs_api.text("d") == "1. Intro\nhello\n2. Plan [DINÁMICO]\nold\n3. Costs\ntotal 10\n"


def test_several_updates_relocate_after_each_edit(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    updates = [
        DynamicSectionUpdate(order=3, content="fin"),
        DynamicSectionUpdate(order=1, content="una línea\notra línea más larga"),
        DynamicSectionUpdate(order=2, content=""),
    ]
    report = _run(docs_api, "d", updates)

    assert report.updated == [1, 2, 3]
    assert report.batches == 3
    # one batch per section, never across sections
    assert len(docs_api.batches) == 3
    assert docs_api.text("d") == (
        "1. Intro\nuna línea\notra línea más larga\n2. Plan [DINÁMICO]\n3. Costs\nfin\n"
    )


def test_title_as_last_paragraph(docs_api):
    docs_api.add("d", "1. Alpha\nbody\n2. Beta\n")
    report = _run(docs_api, "d", [DynamicSectionUpdate(order=2, content="nuevo")])
    assert report.updated == [2]
    assert docs_api.text("d") == "1. Alpha\nbody\n2. Beta\nnuevo\n"


def test_implicit_introduction_is_replaced(docs_api):
    docs_api.add("d", "Preámbulo viejo\n1. Alpha\nbody\n")
    _run(docs_api, "d", [DynamicSectionUpdate(order=0, content="Preámbulo nuevo")])
    assert docs_api.text("d") == "Preámbulo nuevo\n1. Alpha\nbody\n"


def test_missing_section_is_skipped(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    report = _run(docs_api, "d", [
        DynamicSectionUpdate(order=9, content="x"),
        DynamicSectionUpdate(order=1, content="hola"),
    ])
    assert report.updated == [1]
    assert [(s.order, s.reason) for s in report.skipped] == [(9, "section not found")]
    assert docs_api.text("d").startswith("1. Intro\nhola\n2. Plan")


def test_remote_failure_propagates(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    docs_api.fail_on_batch = True
    with pytest.raises(RemoteDocumentError):
        _run(docs_api, "d", [DynamicSectionUpdate(order=2, content="x")])
    with pytest.raises(RemoteDocumentError):
        _run(docs_api, "unknown", [DynamicSectionUpdate(order=2, content="x")])


def test_no_updates_fetches_once(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    report = _run(docs_api, "d", [])
    assert report.updated == [] and docs_api.gets == 1 and docs_api.batches == []


def test_edit_always_followed_by_refetch(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    updater = LiveSectionUpdater(docs_api, refetch_delay=0)
    seen = []
    inner = dict(updater._handlers)

    def _trace(state):
        async def handler(run):
            nxt = await inner[state](run)
            seen.append((state, nxt))
            return nxt
        return handler

    updater._handlers = {state: _trace(state) for state in inner}
    asyncio.run(updater.run("d", [DynamicSectionUpdate(order=1, content="a"), DynamicSectionUpdate(order=2, content="b")]))

    for state, nxt in seen:
        if state is UpdaterState.EDIT:
            assert nxt is UpdaterState.REFETCH
    assert [s for s, _ in seen].count(UpdaterState.EDIT) == 2


def test_plan_tolerates_offset_drift():
    nodes = [
        DocumentNode(text="1. Alpha", start_index=1, end_index=10),
        DocumentNode(text="body", start_index=10, end_index=15),
        DocumentNode(text="2. Beta", start_index=15, end_index=23),
        DocumentNode(text="tail", start_index=23, end_index=28),
    ]
    sections = [
        Section(order=1, title="Alpha", start_index=4),
        Section(order=2, title="Beta", start_index=17),
    ]
    edit = plan_section_edit(sections[0], "nuevo", sections, nodes, body_end=28, tolerance=10)
    assert (edit.insert_at, edit.delete_end, edit.text) == (10, 15, "nuevo\n")

    far = Section(order=1, title="Alpha", start_index=60)
    assert plan_section_edit(far, "x", [far], nodes, body_end=28, tolerance=10) is None


def test_lock_registry_is_per_document():
    registry = DocumentLockRegistry()
    assert registry.lock_for("a") is registry.lock_for("a")
    assert registry.lock_for("a") is not registry.lock_for("b")


def test_concurrent_updates_to_one_document_serialize(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    registry = DocumentLockRegistry()

    async def both():
        await asyncio.gather(
            update_dynamic_sections(docs_api, "d", [DynamicSectionUpdate(order=1, content="uno")],
                                    refetch_delay=0, locks=registry),
            update_dynamic_sections(docs_api, "d", [DynamicSectionUpdate(order=3, content="tres")],
                                    refetch_delay=0, locks=registry),
        )

    asyncio.run(both())
    assert docs_api.text("d") == "1. Intro\nuno\n2. Plan [DINÁMICO]\nold\n3. Costs\ntres\n"


def test_title_picks_between_repeated_orders(docs_api):
    docs_api.add("d", "1. Intro\nhello\n2. Plan\nold\n3. Costs\nfixed\n")
    report = _run(docs_api, "d", [
        DynamicSectionUpdate(order=1, title="Intro", content="Pasos:\n2. Revisar requisitos"),
        DynamicSectionUpdate(order=2, title="Plan", content="nuevo plan"),
    ])
    assert report.updated == [1, 2] and report.skipped == []
    assert docs_api.text("d") == (
        "1. Intro\nPasos:\n2. Revisar requisitos\n2. Plan\nnuevo plan\n3. Costs\nfixed\n"
    )


def test_drifted_title_is_skipped(docs_api):
    docs_api.add("d", THREE_SECTIONS)
    report = _run(docs_api, "d", [DynamicSectionUpdate(order=2, title="Arquitectura", content="x")])
    assert report.updated == []
    assert [(s.order, s.reason) for s in report.skipped] == [(2, "title text drifted")]
    assert docs_api.text("d") == THREE_SECTIONS


@pytest.mark.parametrize("title, expected", [
    ("plan  [DINÁMICO]", "Plan"),
    ("Revisar requisitos", "Revisar requisitos"),
    ("", None),
])
def test_find_section_with_repeated_order(title, expected):
    sections = [
        Section(order=2, title="Revisar requisitos", start_index=10),
        Section(order=2, title="Plan", start_index=30),
    ]
    found, reason = find_section(sections, DynamicSectionUpdate(order=2, title=title))
    if expected is None:
        assert found is None and reason == "ambiguous section order"
    else:
        assert found.title == expected and reason == ""
