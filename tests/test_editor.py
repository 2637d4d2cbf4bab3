import pytest

from editor import Editor, normalize_domain, normalize_redirect_url
from errors import InvalidInput


@pytest.fixture
def editor(config_store, watcher):
    return Editor(config_store, watcher)


@pytest.mark.parametrize("text, expected", [
    ("Example.com", "example.com"),
    ("  https://www.example.com/ ", "example.com"),
    ("http://news.example.com", "news.example.com"),
    ("www.example.com", "example.com"),
])
def test_normalize_domain(text, expected):
    assert normalize_domain(text) == expected


@pytest.mark.parametrize("text", ["", "   ", None])
def test_normalize_domain_rejects_empty(text):
    with pytest.raises(InvalidInput):
        normalize_domain(text)


def test_normalize_redirect_url():
    assert normalize_redirect_url(" safe.test ") == "https://safe.test"
    assert normalize_redirect_url("http://safe.test") == "http://safe.test"
    with pytest.raises(InvalidInput):
        normalize_redirect_url("  ")


def test_add_domain_writes_store_and_syncs(editor, config_store, watcher, rule_store):
    result = editor.add_domain("https://www.Example.com/")
    watcher.process_pending()

    assert result.message == "Website example.com added successfully!"
    assert config_store.get()["blocked_websites"] == ["example.com"]
    assert result.sync.result().ok
    assert len(rule_store.list_active_rules()) == 4


def test_add_duplicate(editor):
    editor.add_domain("a.com")

    with pytest.raises(InvalidInput, match="already in the list"):
        editor.add_domain("www.a.com")


def test_remove_domain(editor, config_store, watcher, rule_store):
    editor.add_domain("a.com")
    editor.add_domain("b.com")
    editor.remove_domain("a.com")
    watcher.process_pending()

    assert config_store.get()["blocked_websites"] == ["b.com"]
    assert [rule.id for rule in rule_store.list_active_rules()] == [10, 11, 12, 13]


def test_remove_unknown_domain(editor):
    with pytest.raises(InvalidInput):
        editor.remove_domain("nope.com")


def test_clear_domains(editor, config_store, watcher, rule_store):
    editor.add_domain("a.com")
    watcher.process_pending()

    editor.clear_domains()
    watcher.process_pending()

    assert config_store.get()["blocked_websites"] == []
    assert rule_store.list_active_rules() == []


def test_toggle(editor, config_store, watcher, rule_store):
    editor.add_domain("a.com")

    off = editor.toggle_enabled()
    watcher.process_pending()
    assert off.message == "Redirector disabled!"
    assert config_store.get()["extension_enabled"] is False
    assert rule_store.list_active_rules() == []

    on = editor.toggle_enabled()
    watcher.process_pending()
    assert on.enabled
    assert len(rule_store.list_active_rules()) == 4


def test_set_redirect_url(editor, config_store, watcher, rule_store):
    editor.add_domain("a.com")
    editor.set_redirect_url("focus.test/back-to-work")
    watcher.process_pending()

    assert config_store.get()["redirect_url"] == "https://focus.test/back-to-work"
    assert {rule.redirect_url for rule in rule_store.list_active_rules()} == {"https://focus.test/back-to-work"}


def test_editor_without_watcher(config_store):
    result = Editor(config_store).add_domain("a.com")

    assert result.sync is None
    assert result.websites == ["a.com"]
