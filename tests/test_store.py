import json

import pytest

from marginsight.storage import store
from marginsight.storage.store import (
    DEFAULT_VARIABLE_COST_ITEMS,
    add_period,
    add_scenario,
    create_default_app_data,
    export_to_json,
    import_from_json,
    load_app_data,
    load_variable_cost_items,
    remove_period,
    remove_scenario,
    save_app_data,
    save_variable_cost_items,
    set_company_name,
    update_period,
    update_scenario,
)


@pytest.fixture
def app_data():
    return create_default_app_data()


class TestDefaults:
    def test_three_empty_periods_and_one_scenario(self, app_data):
        assert [p.label for p in app_data.periods] == ["第1期", "第2期", "第3期"]
        assert all(p.company_id == app_data.company.id for p in app_data.periods)
        assert [s.label for s in app_data.scenarios] == ["試算①"]


class TestBoundedLists:
    def test_add_period_up_to_limit(self, app_data):
        data = add_period(add_period(app_data, "第4期"), "第5期")
        assert len(data.periods) == 5
        assert add_period(data, "第6期") is data
        assert len(app_data.periods) == 3

    def test_remove_period_keeps_minimum(self, app_data):
        data = remove_period(app_data, 0)
        assert [p.label for p in data.periods] == ["第2期", "第3期"]
        assert remove_period(data, 0) is data

    def test_remove_period_bad_index(self, app_data):
        assert remove_period(app_data, 7) is app_data

    def test_update_period(self, app_data):
        data = update_period(app_data, 1, sales=5000.0, label="FY2")
        assert data.periods[1].sales == 5000
        assert data.periods[1].label == "FY2"
        assert app_data.periods[1].sales == 0

    def test_add_scenario_inherits_latest_period(self, app_data):
        data = update_period(app_data, 2, employee_count=8)
        data = add_scenario(data)
        assert data.scenarios[1].label == "試算②"
        assert data.scenarios[1].period_id == data.periods[-1].id
        assert data.scenarios[1].employee_count == 8

    def test_scenario_limit_and_minimum(self, app_data):
        data = app_data
        for _ in range(6):
            data = add_scenario(data)
        assert len(data.scenarios) == 5
        single = create_default_app_data()
        assert remove_scenario(single, 0) is single
        assert len(remove_scenario(data, 4).scenarios) == 4

    def test_update_scenario(self, app_data):
        data = update_scenario(app_data, 0, sales_change_rate=12.5)
        assert data.scenarios[0].sales_change_rate == 12.5

    def test_set_company_name(self, app_data):
        assert set_company_name(app_data, "山田製作所").company.name == "山田製作所"


class TestJson:
    def test_round_trip(self, app_data):
        data = update_period(set_company_name(app_data, "山田製作所"), 0, sales=1234.0, employee_count=4)
        restored = import_from_json(export_to_json(data))
        assert restored == data

    def test_camel_case_keys(self, app_data):
        payload = json.loads(export_to_json(app_data))
        assert "materialCost" in payload["periods"][0]
        assert "salesChangeRate" in payload["scenarios"][0]
        assert "createdAt" in payload["company"]

    def test_malformed_json(self):
        assert import_from_json("{not json") is None

    def test_missing_company(self):
        assert import_from_json(json.dumps({"periods": []})) is None

    def test_missing_periods(self):
        assert import_from_json(json.dumps({"company": {"name": "x"}})) is None

    @pytest.mark.parametrize("payload", [
        {"company": "x", "periods": []},
        {"company": {"name": "x"}, "periods": "第1期"},
        {"company": {"name": "x"}, "periods": [1]},
        {"company": {"name": "x"}, "periods": [{"label": "A"}], "scenarios": ["試算①"]},
        {"company": {"name": "x"}, "periods": [{"label": "A"}], "scenarios": {"label": "試算①"}},
        ["company", "periods"],
    ])
    def test_unexpected_structure(self, payload):
        assert import_from_json(json.dumps(payload, ensure_ascii=False)) is None

    def test_load_corrupted_file(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text('{"company": {"name": "x"}, "periods": [1]}', encoding="utf-8")
        assert load_app_data(path) is None

    def test_missing_scenarios_get_default(self):
        data = import_from_json(json.dumps({"company": {"name": "x"}, "periods": [{"label": "A", "sales": "100"}]}))
        assert data.periods[0].sales == 100
        assert data.periods[0].employee_count == 1
        assert len(data.scenarios) == 1


class TestFiles:
    def test_save_and_load(self, tmp_path, app_data):
        path = save_app_data(app_data, tmp_path / "sub" / "data.json")
        assert path.exists()
        assert load_app_data(path) == app_data

    def test_load_missing_file(self, tmp_path):
        assert load_app_data(tmp_path / "missing.json") is None

    def test_default_location_uses_data_dir(self, tmp_path, monkeypatch, app_data):
        monkeypatch.setattr(store, "DATA_DIR", tmp_path)
        save_app_data(app_data)
        assert (tmp_path / "pl_analyzer_data.json").exists()
        assert load_app_data() == app_data


class TestVariableCostItems:
    def test_defaults_when_missing(self, tmp_path):
        assert load_variable_cost_items(tmp_path / "none.json") == DEFAULT_VARIABLE_COST_ITEMS

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "items.json"
        save_variable_cost_items(["電力料", "包装費"], path)
        assert load_variable_cost_items(path) == ["電力料", "包装費"]

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text("{oops", encoding="utf-8")
        assert load_variable_cost_items(path) == DEFAULT_VARIABLE_COST_ITEMS

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "items.json"
        path.write_text('{"a": 1}', encoding="utf-8")
        assert load_variable_cost_items(path) == DEFAULT_VARIABLE_COST_ITEMS

    def test_defaults_are_copied(self, tmp_path):
        items = load_variable_cost_items(tmp_path / "none.json")
        items.append("x")
        assert "x" not in DEFAULT_VARIABLE_COST_ITEMS
