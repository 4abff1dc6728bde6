import json

import pytest

from webconsole.core.storage import JsonFileKeyValueStore, MemoryKeyValueStore


@pytest.fixture(params=['memory', 'json'])
def any_store(request, tmp_path):
    if request.param == 'memory':
        return MemoryKeyValueStore()
    return JsonFileKeyValueStore(str(tmp_path))


class TestKeyValueStore:
    def test_get_exact_and_below(self, any_store):
        any_store.put('/alice/HelloWorld/a', {'v': 1})
        any_store.put('/alice/HelloWorld/b', {'v': 2})
        any_store.put('/alice/HelloWorldX/c', {'v': 3})
        assert any_store.get('/alice/HelloWorld/a') == {'/alice/HelloWorld/a': {'v': 1}}
        assert set(any_store.get('/alice/HelloWorld')) == {'/alice/HelloWorld/a', '/alice/HelloWorld/b'}
        assert any_store.get('/bob') == {}

    def test_delete_subtree(self, any_store):
        any_store.put('/alice/a', 1)
        any_store.put('/alice/b', 2)
        any_store.put('/bob/a', 3)
        any_store.delete('/alice')
        assert any_store.get('/alice') == {}
        assert any_store.get('/bob/a') == {'/bob/a': 3}

    def test_overwrite(self, any_store):
        any_store.put('/k', 1)
        any_store.put('/k', 2)
        assert any_store.get('/k') == {'/k': 2}


class TestJsonFileKeyValueStore:
    def test_survives_restart(self, tmp_path):
        JsonFileKeyValueStore(str(tmp_path)).put('/alice/x', {'visible': False})
        assert JsonFileKeyValueStore(str(tmp_path)).get('/alice/x') == {'/alice/x': {'visible': False}}

    def test_keeps_backup(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path))
        store.put('/a', 1)
        store.put('/b', 2)
        backup = json.loads((tmp_path / 'store.json.bak').read_text())
        assert backup == {'/a': 1}

    def test_falls_back_to_backup(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path))
        store.put('/a', 1)
        store.put('/b', 2)
        (tmp_path / 'store.json').write_text('{corrupted')
        restored = JsonFileKeyValueStore(str(tmp_path))
        assert restored.get('/a') == {'/a': 1}
        assert json.loads((tmp_path / 'store.json').read_text()) == {'/a': 1}

    def test_starts_empty_when_everything_is_corrupted(self, tmp_path):
        (tmp_path / 'store.json').write_text('[]')
        assert JsonFileKeyValueStore(str(tmp_path)).get('/') == {}

    def test_no_temp_files_left(self, tmp_path):
        store = JsonFileKeyValueStore(str(tmp_path))
        store.put('/a', 1)
        assert not list(tmp_path.glob('*.tmp'))
