from vbudget.domain.models import JobResult, JobStatus, Thumbnail
from vbudget.infrastructure.output_writer import OutputWriter


def _complete(job, thumbs=2):
    job.status = JobStatus.COMPLETED
    job.result = JobResult(
        encoded_bytes=b"encoded",
        encoded_size_bytes=7,
        achieved_bitrate_kbps=900,
        duration_seconds=10.0,
        thumbnails=[
            Thumbnail(timestamp_seconds=float(i), image_bytes=b"jpg%d" % i, width=10, height=10)
            for i in range(thumbs)
        ],
    )
    return job


def test_writes_video_and_thumbnails(tmp_path, make_job):
    job = _complete(make_job("holiday.mov"))
    out = tmp_path / "out"

    written = OutputWriter(out).write(job)

    assert written == [
        out / "holiday" / "holiday_opt.mp4",
        out / "holiday" / "thumbnails" / "holiday_thumb_01.jpg",
        out / "holiday" / "thumbnails" / "holiday_thumb_02.jpg",
    ]
    assert written[0].read_bytes() == b"encoded"
    assert written[2].read_bytes() == b"jpg1"


def test_custom_suffix(tmp_path, make_job):
    job = _complete(make_job("clip.mp4"), thumbs=0)
    written = OutputWriter(tmp_path, suffix="_small").write(job)
    assert written == [tmp_path / "clip" / "clip_small.mp4"]


def test_failed_jobs_write_nothing(tmp_path, make_job):
    job = make_job()
    job.mark_failed("engine_error", "boom")
    assert OutputWriter(tmp_path / "out").write(job) == []
    assert not (tmp_path / "out").exists()


def test_sources_sharing_a_stem_get_separate_folders(tmp_path, make_job):
    first = _complete(make_job("a/clip.mp4"), thumbs=1)
    second = _complete(make_job("b/clip.mp4"), thumbs=1)
    second.result = second.result.model_copy(update={"encoded_bytes": b"other"})
    third = _complete(make_job("clip.mov"), thumbs=0)
    out = tmp_path / "out"
    writer = OutputWriter(out)

    first_written = writer.write(first)
    second_written = writer.write(second)
    third_written = writer.write(third)

    assert first_written[0] == out / "clip" / "clip_opt.mp4"
    assert second_written[0] == out / f"clip_{second.id}" / f"clip_{second.id}_opt.mp4"
    assert third_written[0] == out / f"clip_{third.id}" / f"clip_{third.id}_opt.mp4"
    assert first_written[0].read_bytes() == b"encoded"
    assert second_written[0].read_bytes() == b"other"
    assert len({path for path in first_written + second_written + third_written}) == 5


def test_rewriting_the_same_source_reuses_its_folder(tmp_path, make_job):
    job = _complete(make_job("clip.mp4"), thumbs=0)
    writer = OutputWriter(tmp_path)
    assert writer.write(job) == writer.write(job) == [tmp_path / "clip" / "clip_opt.mp4"]
