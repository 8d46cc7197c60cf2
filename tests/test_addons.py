"""
Tests for add-on template parsing and merging.
"""

import pytest
import yaml

from stackpilot.errors import AddonsMergeError, InvalidManifestError
from stackpilot.stack.addons import load_cfn_yaml, merge_addon_templates, parse_addons

TABLE = """\
Parameters:
  App:
    Type: String
Resources:
  Table:
    Type: AWS::DynamoDB::Table
    Properties:
      TableName: !Sub '${App}-orders'
Outputs:
  TableArn:
    Value: !GetAtt Table.Arn
"""


def write(workload_dir, name, text):
    addons = workload_dir / "addons"
    addons.mkdir(exist_ok=True)
    (addons / name).write_text(text)


class TestParseAddons:
    def test_no_addons_dir(self, workload_dir):
        assert parse_addons(workload_dir) is None

    def test_empty_addons_dir(self, workload_dir):
        (workload_dir / "addons").mkdir()
        (workload_dir / "addons" / "README.md").write_text("notes")
        assert parse_addons(workload_dir) is None

    def test_short_form_intrinsics_are_expanded(self, workload_dir):
        write(workload_dir, "table.yml", TABLE)

        addons = parse_addons(workload_dir)

        table = addons.template["Resources"]["Table"]
        assert table["Properties"]["TableName"] == {"Fn::Sub": "${App}-orders"}
        assert addons.template["Outputs"]["TableArn"]["Value"] == {"Fn::GetAtt": ["Table", "Arn"]}
        assert set(addons.template["Parameters"]) == {"App", "Env", "Name"}
        assert yaml.safe_load(addons.render()) == addons.template

    def test_artifact_key_is_content_addressed(self, workload_dir):
        write(workload_dir, "table.yml", TABLE)
        first = parse_addons(workload_dir).artifact_key("api")

        assert first.startswith("manual/addons/api/")
        assert parse_addons(workload_dir).artifact_key("api") == first
        write(workload_dir, "queue.yaml", "Resources:\n  Queue:\n    Type: AWS::SQS::Queue\n")
        assert parse_addons(workload_dir).artifact_key("api") != first

    def test_invalid_yaml(self, workload_dir):
        write(workload_dir, "bad.yml", "Resources: [unclosed\n")
        with pytest.raises(InvalidManifestError):
            parse_addons(workload_dir)

    def test_non_mapping(self, workload_dir):
        write(workload_dir, "list.yml", "- a\n- b\n")
        with pytest.raises(InvalidManifestError):
            parse_addons(workload_dir)


class TestMerge:
    def test_identical_duplicates_merge(self):
        doc = {"Resources": {"Queue": {"Type": "AWS::SQS::Queue"}}}
        merged = merge_addon_templates({"a.yml": doc, "b.yml": doc})
        assert merged["Resources"] == {"Queue": {"Type": "AWS::SQS::Queue"}}

    def test_conflicting_duplicates_name_both_files(self):
        with pytest.raises(AddonsMergeError) as exc:
            merge_addon_templates({
                "a.yml": {"Resources": {"Queue": {"Type": "AWS::SQS::Queue"}}},
                "b.yml": {"Resources": {"Queue": {"Type": "AWS::SNS::Topic"}}},
            })

        assert exc.value.logical_id == "Queue"
        assert exc.value.files == ["a.yml", "b.yml"]

    def test_reserved_parameters_may_be_redeclared(self):
        merged = merge_addon_templates({"a.yml": {"Parameters": {"Env": {"Type": "String", "Description": "env"}}}})
        assert merged["Parameters"]["Env"] == {"Type": "String"}

    def test_load_cfn_yaml_ref_and_condition(self):
        doc = load_cfn_yaml("A: !Ref Name\nB: !Condition IsProd\nC: !Join ['-', [a, b]]\n")
        assert doc == {"A": {"Ref": "Name"}, "B": {"Condition": "IsProd"}, "C": {"Fn::Join": ["-", ["a", "b"]]}}
