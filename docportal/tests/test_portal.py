from docportal.config import PortalSettings
from docportal.portal import DocumentPortal, _result_filename, unique_upload_name
from docportal.processor_client import ProcessorResult


class StaticProcessor:
    def __init__(self, result):
        self.result = result

    def process_document(self, document_id):
        return self.result


def _portal(tmp_path, result=None, **overrides):
    options = {"work_dir": tmp_path, "sweep_on_startup": False, **overrides}
    settings = PortalSettings(**options)
    processor = StaticProcessor(result or ProcessorResult(status="success", message="started"))
    return DocumentPortal(settings, processor=processor)


def test_result_filenames_always_land_in_results():
    assert _result_filename("report-form.docx") == "report-form.docx"
    assert _result_filename("out/report.docx") == "report_processed.docx"
    assert unique_upload_name("a.pdf").endswith("-a.pdf")


def test_processor_result_name_collision_gets_unique_path(tmp_path):
    result = ProcessorResult(status="success", message="done", processed_filename="report-form.docx", content=b"new")
    portal = _portal(tmp_path, result)
    portal.blob_store.save("report-form.docx", b"old")
    document = portal.upload("report.pdf", b"%PDF1", "application/pdf")

    payload = portal.process(document.id)

    assert payload["processedPath"] != "Results/report-form.docx"
    assert payload["processedPath"].endswith("-report-form.docx")
    assert portal.blob_store.get("Results/report-form.docx") == b"old"


def test_startup_sweep_respects_setting(tmp_path):
    enabled = _portal(tmp_path, sweep_on_startup=True)
    enabled.blob_store.save("a-form.docx", b"x")

    assert enabled.startup().removed_blobs == 1
    assert _portal(tmp_path).startup() is None


def test_results_mirror_survives_restart(tmp_path):
    mirror = tmp_path / "Results"
    first = _portal(tmp_path, results_mirror_dir=mirror)
    first.blob_store.save("a-form.docx", b"persisted")

    second = _portal(tmp_path, results_mirror_dir=mirror)

    assert second.template_content("Results/a-form.docx") == ("a-form.docx", b"persisted")
