import io

import pytest

import index
from engine import CATEGORIES, CategoryStore, KBStatus, is_yes
from conftest import SAMPLE


@pytest.fixture
def kb():
    store = CategoryStore()
    assert store.load(io.StringIO(SAMPLE)) == 4
    return store


def test_status_codes():
    assert KBStatus.OK == 0
    assert KBStatus.CLOSEST_MATCH == 1
    assert KBStatus.NOT_FOUND < 0
    assert KBStatus.INVALID < 0
    assert KBStatus.NOMEM < 0


@pytest.mark.parametrize("reply", ["yes", "Y", "  YES ", "y\n"])
def test_is_yes(reply):
    assert is_yes(reply)


@pytest.mark.parametrize("reply", ["no", "", "yeah", None])
def test_is_not_yes(reply):
    assert not is_yes(reply)


def test_resolve_is_case_insensitive():
    store = CategoryStore()
    assert store.resolve("WHAT") is store.resolve("what")
    assert store.resolve("Where") is not None
    assert store.resolve("when") is None


def test_get_exact(kb):
    assert kb.get("what", "ICT1002") == (KBStatus.OK, "Programming Fundamentals.")
    assert kb.get("WHAT", "ict1001") == (KBStatus.OK, "Introduction to ICT.")
    assert kb.get("who", "frank guan")[0] == KBStatus.OK


def test_get_invalid_category(kb):
    assert kb.get("when", "x") == (KBStatus.INVALID, None)
    assert kb.get("", "ICT1002") == (KBStatus.INVALID, None)


def test_get_closest_match_accepted(kb, replies):
    confirm = replies("yes")
    kb.confirm = confirm
    assert kb.get("what", "ICT1003") == (KBStatus.CLOSEST_MATCH, "Programming Fundamentals.")
    assert confirm.prompts == ["Sorry, I don't know what is ICT1003. Did you mean ICT1002?"]


def test_get_closest_match_rejected(kb, replies):
    kb.confirm = replies("no")
    assert kb.get("what", "ICT1003") == (KBStatus.NOT_FOUND, None)


def test_get_without_confirm_never_offers(kb):
    assert kb.get("what", "ICT1003") == (KBStatus.NOT_FOUND, None)


def test_get_unrelated_key_not_prompted(kb, replies):
    confirm = replies("yes")
    kb.confirm = confirm
    assert kb.get("where", "Zzzzzzzzzzzzzz") == (KBStatus.NOT_FOUND, None)
    assert confirm.prompts == []


def test_get_empty_category_not_found(replies):
    store = CategoryStore(confirm=replies("yes"))
    assert store.get("who", "anyone") == (KBStatus.NOT_FOUND, None)


def test_closest_reports_candidate(kb):
    assert kb.closest("what", "ict1002") == (KBStatus.OK, "ICT1002")
    assert kb.closest("what", "ICT1003") == (KBStatus.CLOSEST_MATCH, "ICT1002")
    assert kb.closest("where", "Zzzzzzzzzzzzzz") == (KBStatus.NOT_FOUND, None)
    assert kb.closest("when", "x") == (KBStatus.INVALID, None)


def test_put_and_overwrite():
    store = CategoryStore()
    assert store.put("what", "SIT", "A university.") == KBStatus.OK
    assert store.put("WHAT", "sit", "Singapore Institute of Technology.") == KBStatus.OK
    assert store.get("what", "SIT") == (KBStatus.OK, "Singapore Institute of Technology.")
    assert len(store.resolve("what")) == 1


def test_put_invalid_category():
    assert CategoryStore().put("why", "k", "v") == KBStatus.INVALID


def test_put_truncates():
    store = CategoryStore(max_key_len=4, max_value_len=6)
    assert store.put("what", "ICT1002", "Programming") == KBStatus.OK
    assert store.get("what", "ICT1") == (KBStatus.OK, "Progra")
    assert store.get("what", "ICT1002") == (KBStatus.OK, "Progra")


@pytest.mark.parametrize(
    "key,value",
    [("", "v"), ("a=b", "v"), ("k", "line\nbreak"), ("[x]", "v"), ("k", "cr\rhere")],
)
def test_put_rejects_unwritable_entries(key, value):
    store = CategoryStore()
    assert store.put("what", key, value) == KBStatus.INVALID
    assert len(store.resolve("what")) == 0


def test_load_skips_unwritable_keys_and_dump_still_works():
    store = CategoryStore()
    text = "[what]\n=orphan value\n[x]=y\nICT1002=PF\n[who]\n[]=nobody\nFrank=Lecturer.\n"
    assert store.load(io.StringIO(text)) == 2

    out = io.StringIO()
    store.dump(out)
    assert out.getvalue() == "[what]\nICT1002=PF\n\n[where]\n\n[who]\nFrank=Lecturer.\n\n"

    again = CategoryStore()
    assert again.load(io.StringIO(out.getvalue())) == 2
    for cat in CATEGORIES:
        assert list(again.resolve(cat).items()) == list(store.resolve(cat).items())


def test_bulk_load_skips_unwritable_triples():
    store = CategoryStore(max_key_len=3)
    n = store.bulk_load(
        [("what", "", "empty"), ("what", "[a]bc", "header once cut"),
         ("where", "k", "two\nlines"), ("who", "okay", "fine")]
    )
    assert n == 1
    assert list(store.resolve("who").items()) == [("oka", "fine")]
    store.dump(io.StringIO())


def test_put_out_of_memory(monkeypatch):
    store = CategoryStore()
    store.put("what", "a", "1")

    def fail(key, value):
        raise MemoryError

    monkeypatch.setattr(index, "create_leaf", fail)
    assert store.put("what", "b", "2") == KBStatus.NOMEM
    assert store.put("where", "b", "2") == KBStatus.NOMEM
    assert store.get("what", "a") == (KBStatus.OK, "1")
    assert store.get("what", "b") == (KBStatus.NOT_FOUND, None)


def test_reset_clears_all(kb):
    kb.reset()
    for cat, key in [("what", "ICT1001"), ("what", "ICT1002"), ("where", "SIT"), ("who", "Frank Guan")]:
        assert kb.get(cat, key) == (KBStatus.NOT_FOUND, None)
        assert len(kb.resolve(cat)) == 0


def test_bulk_load_replaces_everything(kb):
    kb.put("where", "Home", "Here.")
    n = kb.bulk_load([("what", "New", "Only this."), ("when", "Bad", "skipped")])
    assert n == 1
    assert kb.get("what", "New") == (KBStatus.OK, "Only this.")
    assert kb.get("what", "ICT1002") == (KBStatus.NOT_FOUND, None)
    assert len(kb.resolve("where")) == 0
    assert len(kb.resolve("who")) == 0


def test_bulk_load_duplicates_last_wins():
    store = CategoryStore()
    n = store.bulk_load([("what", "k", "first"), ("what", "K", "second"), ("what", "j", "x")])
    assert n == 3
    assert store.get("what", "k") == (KBStatus.OK, "second")
    assert len(store.resolve("what")) == 2
    store.resolve("what")._validate()


def test_bulk_load_builds_balanced_tree():
    store = CategoryStore()
    triples = [("who", f"person{i:03d}", str(i)) for i in range(100)]
    assert store.bulk_load(triples) == 100
    stats = store.resolve("who").stats()
    assert stats["balanced"] is True
    assert stats["height"] == 7
    store.resolve("who")._validate()


def test_bulk_load_out_of_memory_leaves_store_intact(kb, monkeypatch):
    def fail(key, value):
        raise MemoryError

    monkeypatch.setattr(index, "create_leaf", fail)
    assert kb.bulk_load([("what", "x", "y")]) == KBStatus.NOMEM
    assert kb.get("what", "ICT1002") == (KBStatus.OK, "Programming Fundamentals.")
    assert kb.get("what", "x") == (KBStatus.NOT_FOUND, None)


def test_bulk_load_out_of_memory_late_category(kb, monkeypatch):
    real = index.create_leaf
    calls = []

    def flaky(key, value):
        calls.append(key)
        if key == "late":
            raise MemoryError
        return real(key, value)

    monkeypatch.setattr(index, "create_leaf", flaky)
    result = kb.bulk_load([("what", "early", "1"), ("who", "late", "2")])
    assert result == KBStatus.NOMEM
    assert calls == ["early", "late"]
    assert kb.get("what", "early") == (KBStatus.NOT_FOUND, None)
    assert kb.get("what", "ICT1001") == (KBStatus.OK, "Introduction to ICT.")


def test_dump_format_descending(kb):
    kb.put("what", "ICT1005", "Mathematics and Statistics for ICT.")
    out = io.StringIO()
    kb.dump(out)
    assert out.getvalue() == (
        "[what]\n"
        "ICT1005=Mathematics and Statistics for ICT.\n"
        "ICT1002=Programming Fundamentals.\n"
        "ICT1001=Introduction to ICT.\n"
        "\n"
        "[where]\n"
        "SIT=Dover Drive.\n"
        "\n"
        "[who]\n"
        "Frank Guan=Frank teaches the C section of ICT1002.\n"
        "\n"
    )


def test_dump_then_load_preserves_values():
    original = CategoryStore()
    expected = {}
    for i, cat in enumerate(CATEGORIES * 20):
        key = f"{cat}-entity-{i}"
        value = f"value {i} = {cat}"
        assert original.put(cat, key, value) == KBStatus.OK
        expected[(cat, key)] = value

    buf = io.StringIO()
    original.dump(buf)
    fresh = CategoryStore()
    assert fresh.load(io.StringIO(buf.getvalue())) == len(expected)

    for (cat, key), value in expected.items():
        assert fresh.get(cat, key) == (KBStatus.OK, value)
    for cat in CATEGORIES:
        assert list(fresh.resolve(cat).items()) == list(original.resolve(cat).items())
        assert fresh.resolve(cat).stats()["balanced"] is True


def test_save_and_load_path(kb, tmp_path):
    path = tmp_path / "saved.txt"
    kb.save_path(str(path))
    fresh = CategoryStore()
    assert fresh.load_path(str(path)) == 4
    assert fresh.get("where", "SIT") == (KBStatus.OK, "Dover Drive.")


def test_load_path_counts_file_entries(kb_file):
    store = CategoryStore()
    assert store.load_path(str(kb_file)) == 4


def test_load_path_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        CategoryStore().load_path(str(tmp_path / "missing.txt"))


def test_repr_shows_sizes(kb):
    assert repr(kb) == "CategoryStore(what=2, where=1, who=1)"
