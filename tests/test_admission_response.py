import base64
import json
import unittest

import jsonpatch
import yaml

from src.admission.guards import DecodeError
from src.admission.response import review_response
from src.admission.review import ResourceKind, decode_review, resolve_kind
from src.common.settings import SweepSettings

ROUND_TRIP_POD = """\
apiVersion: v1
kind: Pod
metadata:
  generateName: web-
  labels:
    extensions.linkerd.io/sweep-sidecar: enabled
  annotations:
    linkerd.io/inject: enabled
    extensions.linkerd.io/sweep-containers: web
spec:
  containers:
    - name: web
      image: example/app:1.0
      command: ["/bin/app"]
"""


def _review(
    obj,
    kind="Pod",
    group="",
    uid="705ab4f5-6393-11e8-b7cc-42010a800002",
    api_version="admission.k8s.io/v1",
    operation="CREATE",
):
    return json.dumps(
        {
            "apiVersion": api_version,
            "kind": "AdmissionReview",
            "request": {
                "uid": uid,
                "kind": {"group": group, "version": "v1", "kind": kind},
                "resource": {"group": group, "version": "v1", "resource": kind.lower() + "s"},
                "namespace": "default",
                "operation": operation,
                "object": obj,
            },
        }
    ).encode("utf-8")


def _decoded_patch(response):
    return json.loads(base64.b64decode(response["patch"]))


class DecoderTests(unittest.TestCase):
    def test_decode_resolves_supported_kinds(self) -> None:
        request = decode_review(_review({"metadata": {}}, kind="Job", group="batch"))
        self.assertIs(request.resource_kind, ResourceKind.JOB)
        self.assertEqual(request.operation, "CREATE")
        self.assertEqual(request.correlation_id, "705ab4f5-6393-11e8-b7cc-42010a800002")

    def test_kind_table(self) -> None:
        self.assertIs(resolve_kind("", "Pod"), ResourceKind.POD)
        self.assertIs(resolve_kind("batch", "Job"), ResourceKind.JOB)
        self.assertIs(resolve_kind("apps", "Deployment"), ResourceKind.UNSUPPORTED)
        self.assertIs(resolve_kind("", "Job"), ResourceKind.UNSUPPORTED)

    def test_invalid_json_raises_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_review(b"{not json")

    def test_envelope_without_request_raises_decode_error(self) -> None:
        with self.assertRaises(DecodeError):
            decode_review(json.dumps({"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"}).encode())


class ReviewResponseTests(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = SweepSettings()

    def test_round_trip_patch(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        body = review_response(_review(obj), self.settings)

        self.assertEqual(body["apiVersion"], "admission.k8s.io/v1")
        self.assertEqual(body["kind"], "AdmissionReview")
        response = body["response"]
        self.assertTrue(response["allowed"])
        self.assertEqual(response["uid"], "705ab4f5-6393-11e8-b7cc-42010a800002")
        self.assertEqual(response["patchType"], "JSONPatch")

        ops = _decoded_patch(response)
        self.assertEqual(
            [(op["op"], op["path"]) for op in ops],
            [
                ("add", "/spec/initContainers"),
                ("add", "/spec/initContainers/-"),
                ("add", "/spec/volumes"),
                ("add", "/spec/volumes/-"),
                ("replace", "/spec/containers/0/command"),
                ("add", "/spec/containers/0/args"),
                ("add", "/spec/containers/0/volumeMounts"),
                ("add", "/spec/containers/0/volumeMounts/-"),
            ],
        )
        patched = jsonpatch.apply_patch(obj, ops, in_place=False)
        self.assertEqual(patched["spec"]["containers"][0]["args"], ["--shutdown", "--", "/bin/app"])

    def test_job_is_patched_under_template(self) -> None:
        job = {
            "metadata": {"name": "client", "namespace": "default"},
            "spec": {
                "template": {
                    "metadata": {
                        "labels": {"extensions.linkerd.io/sweep-sidecar": "enabled"},
                        "annotations": {
                            "linkerd.io/inject": "enabled",
                            "extensions.linkerd.io/sweep-containers": "curl",
                        },
                    },
                    "spec": {
                        "containers": [{"name": "curl", "image": "curlimages/curl", "command": ["sh", "-c"], "args": ["sleep 10"]}],
                    },
                }
            },
        }
        response = review_response(_review(job, kind="Job", group="batch"), self.settings)["response"]
        ops = _decoded_patch(response)
        self.assertTrue(all(op["path"].startswith("/spec/template/spec/") for op in ops))

    def test_unlabelled_object_is_allowed_without_patch(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        del obj["metadata"]["labels"]
        response = review_response(_review(obj), self.settings)["response"]
        self.assertEqual(response, {"uid": "705ab4f5-6393-11e8-b7cc-42010a800002", "allowed": True})

    def test_unsupported_kind_is_allowed_without_patch(self) -> None:
        config_map = {"metadata": {"name": "settings"}, "data": {"key": "value"}}
        response = review_response(_review(config_map, kind="ConfigMap"), self.settings)["response"]
        self.assertTrue(response["allowed"])
        self.assertNotIn("patch", response)

    def test_malformed_body_is_denied_with_message(self) -> None:
        body = review_response(b'{"request": {"uid": "abc"}}', self.settings)
        response = body["response"]
        self.assertFalse(response["allowed"])
        self.assertEqual(response["uid"], "abc")
        self.assertEqual(response["status"]["code"], 400)
        self.assertIn("AdmissionRequest is invalid", response["status"]["message"])

    def test_non_json_body_is_denied(self) -> None:
        response = review_response(b"\x00garbage", self.settings)["response"]
        self.assertFalse(response["allowed"])
        self.assertEqual(response["uid"], "")

    def test_eligible_pod_without_spec_is_denied(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        del obj["spec"]
        response = review_response(_review(obj), self.settings)["response"]
        self.assertFalse(response["allowed"])
        self.assertIn("spec", response["status"]["message"])

    def test_readmitting_patched_pod_is_plain_allow(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        first = review_response(_review(obj), self.settings)["response"]
        patched = jsonpatch.apply_patch(obj, _decoded_patch(first), in_place=False)

        second = review_response(_review(patched), self.settings)["response"]
        self.assertEqual(second, {"uid": "705ab4f5-6393-11e8-b7cc-42010a800002", "allowed": True})

    def test_update_is_admitted_without_patch(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        response = review_response(_review(obj, operation="UPDATE"), self.settings)["response"]
        self.assertTrue(response["allowed"])
        self.assertNotIn("patch", response)

    def test_v1beta1_envelope_is_echoed(self) -> None:
        obj = yaml.safe_load(ROUND_TRIP_POD)
        body = review_response(_review(obj, api_version="admission.k8s.io/v1beta1"), self.settings)
        self.assertEqual(body["apiVersion"], "admission.k8s.io/v1beta1")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
