from kubectl_assert_eventually.conditions import (
    all_conditions,
    exists,
    has_condition,
    has_label,
    label_equals,
)


def test_label_equals(make):
    processed = make("mr", "v1", "ConfigMap", labels={"processed": "true"})
    pending = make("mr", "v1", "ConfigMap", labels={"processed": "false"})
    unlabeled = {"metadata": {"name": "mr"}}

    check = label_equals("processed")
    assert check(processed)
    assert not check(pending)
    assert not check(unlabeled)
    assert str(check) == "label processed"
    assert str(label_equals("tier", "gold")) == "label tier=gold"


def test_has_label(make):
    assert has_label("processed")(make("mr", "v1", "ConfigMap", labels={"processed": "false"}))
    assert not has_label("processed")(make("mr", "v1", "ConfigMap"))


def test_has_condition():
    claim = {
        "status": {
            "conditions": [
                {"type": "Synced", "status": "True", "reason": "ReconcileSuccess"},
                {"type": "Ready", "status": "False", "reason": "Creating"},
            ]
        }
    }

    assert has_condition("Synced")(claim)
    assert has_condition("Synced", reason="ReconcileSuccess")(claim)
    assert not has_condition("Synced", reason="ReconcileError")(claim)
    assert not has_condition("Ready")(claim)
    assert has_condition("Ready", "False")(claim)
    assert not has_condition("Available")(claim)
    assert not has_condition("Available")({"status": {}})
    assert str(has_condition("Ready", "False", "Creating")) == "condition Ready=False (Creating)"


def test_all_conditions(make):
    obj = make("mr", "v1", "ConfigMap", labels={"a": "true"})
    obj["status"] = {"conditions": [{"type": "Ready", "status": "True"}]}

    both = all_conditions(label_equals("a"), has_condition("Ready"))
    assert both(obj)
    assert str(both) == "label a and condition Ready"
    assert not all_conditions(label_equals("a"), label_equals("b"))(obj)
    assert exists()(obj)
