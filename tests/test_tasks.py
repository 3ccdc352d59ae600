"""
Tests for task descriptors, tag parsing and task packages.
"""
import pytest
from pydantic import ValidationError

from photo_analyzer.core.exceptions import DataIntegrityError, ModelCallError, PackageNotFoundError
from photo_analyzer.db.repository import PhotoRecord
from photo_analyzer.pipeline.packages import get_task_list, list_packages, normalize_tasks, register_package
from photo_analyzer.pipeline.tasks import (
    VISION_HANDLERS,
    BatchPolicy,
    ChunksEmbeddingTask,
    ChunkTask,
    TagsEmbeddingTask,
    TagTask,
    VisionTask,
    VisualDetectionTask,
    dump_tasks,
    parse_tag_list,
    parse_tasks,
)
from photo_analyzer.pipeline.tasks.tags import extract_tag_list, parse_tag


class TestTagParsing:

    def test_group_defaults_to_misc(self):
        assert parse_tag("sunset") == ("sunset", "misc")
        assert parse_tag(" beach |  place ") == ("beach", "place")

    def test_empty_tag_is_dropped(self):
        assert parse_tag(" | place") is None

    def test_no_people_added_when_no_person_group(self):
        tags = parse_tag_list(["dog | animal", "beach | place"])
        assert ("no people", "misc") in tags
        assert tags[-1] == ("no people", "misc")

    def test_no_people_not_added_with_person_group(self):
        tags = parse_tag_list(["woman | person", "beach | place"])
        assert ("no people", "misc") not in tags

    @pytest.mark.parametrize("raw", [
        [],
        ["dog | animal"],
        ["child | person"],
        ["man|person", "car"],
    ])
    def test_no_people_iff_no_person(self, raw):
        tags = parse_tag_list(raw)
        has_person = any(group == "person" for _, group in tags)
        assert (("no people", "misc") in tags) != has_person

    def test_extract_tag_list_accepts_dict_or_list(self):
        assert extract_tag_list({"tags": ["a | b"]}) == ["a | b"]
        assert extract_tag_list(["a | b"]) == ["a | b"]

    def test_extract_tag_list_rejects_missing_tags(self):
        with pytest.raises(ModelCallError):
            extract_tag_list({"labels": []})


class TestTaskDescriptors:

    def test_parse_discriminated_union(self):
        tasks = parse_tasks([
            {"kind": "vision", "name": "v", "prompts": ["context"]},
            {"kind": "tags", "name": "t", "description_source_fields": ["context"]},
            {"kind": "visual_detection", "categories": ["dog"]},
        ])
        assert isinstance(tasks[0], VisionTask)
        assert isinstance(tasks[1], TagTask)
        assert isinstance(tasks[2], VisualDetectionTask)
        assert tasks[2].name == "visual_detection"

    def test_descriptors_round_trip(self):
        tasks = get_task_list("topology")
        again = parse_tasks(dump_tasks(tasks))
        assert [t.name for t in again] == [t.name for t in tasks]
        assert dump_tasks(again) == dump_tasks(tasks)

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            parse_tasks([{"kind": "audio", "name": "x"}])

    def test_unknown_vision_model_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            VisionTask(name="v", model="llava", prompts=["context"])
        assert "unknown vision model" in str(exc_info.value).lower()

    def test_unknown_prompt_rejected(self):
        with pytest.raises(ValidationError):
            VisionTask(name="v", prompts=["not_a_prompt"])

    def test_handler_resolved_at_construction(self):
        task = VisionTask(name="v", model="molmo", prompts=["topology"])
        assert task.handler is VISION_HANDLERS["molmo"]
        assert task.needs_item_prompts is True

    def test_gpt_needs_item_prompts_only_with_dependent_field(self):
        assert VisionTask(name="v", prompts=["context"]).needs_item_prompts is False
        assert VisionTask(
            name="v", prompts=["topology"], prompt_dependent_field="context"
        ).needs_item_prompts is True

    def test_accumulator_is_private_and_reset(self):
        task = TagTask(name="t", description_source_fields=["context"])
        task.merge_result("p1", {"tags": [("a", "b")]})
        task.merge_result("p1", {"extra": 1})
        assert task.data == {"p1": {"tags": [("a", "b")], "extra": 1}}
        assert "data" not in task.to_descriptor()
        task.reset()
        assert task.data == {}


class TestVisionPrompts:

    def test_shared_prompts_rendered_once_per_batch(self):
        task = VisionTask(name="v", prompts=["context_story"])
        photos = [PhotoRecord(id="1", name="a.jpg"), PhotoRecord(id="2", name="b.jpg")]
        prompts = task.build_prompts(photos)
        assert len(prompts) == 1
        assert "a.jpg, b.jpg" in prompts[0]

    def test_item_prompts_use_refreshed_descriptions(self):
        task = VisionTask(
            name="v", model="molmo", prompts=["topology"], prompts_names=["topology"],
            prompt_dependent_field="context",
        )
        photo = PhotoRecord(id="1", name="a.jpg", descriptions={"context": "a quiet harbour"})
        prompts = task.build_prompts([photo])
        assert prompts[0]["id"] == "1"
        assert prompts[0]["prompts"][0]["id"] == "topology"
        assert "a quiet harbour" in prompts[0]["prompts"][0]["text"]


class TestChunkTask:

    def test_methods_per_category(self):
        task = ChunkTask(
            name="c",
            description_source_fields=["context", "topology"],
            chunk_methods={"topology": {"type": "split_by_pipes"}},
        )
        photo = PhotoRecord(id="1", name="a.jpg", descriptions={
            "context": "One. Two.",
            "topology": "left: sea|right: sand",
        })
        chunks = task.chunk_photo(photo)
        assert chunks["context"] == ["One. Two."]
        assert chunks["topology"] == ["left: sea", "right: sand"]

    def test_missing_category_skipped(self):
        task = ChunkTask(name="c", description_source_fields=["context", "story"])
        chunks = task.chunk_photo(PhotoRecord(id="1", name="a.jpg", descriptions={"context": "One."}))
        assert list(chunks) == ["context"]

    def test_missing_descriptions_is_fatal(self):
        task = ChunkTask(name="c", description_source_fields=["context"])
        with pytest.raises(DataIntegrityError):
            task.chunk_photo(PhotoRecord(id="1", name="a.jpg", descriptions=None))


class TestBatchPolicy:

    def test_stagger_grows_with_index(self):
        policy = BatchPolicy(size=16, stagger_sec=1.5)
        assert [policy.delay_for(i) for i in range(3)] == [0.0, 1.5, 3.0]

    def test_fixed_delay_optionally_skips_first_batch(self):
        assert BatchPolicy(size=5, delay_sec=0.5).delay_for(0) == 0.5
        assert BatchPolicy(size=5, delay_sec=0.5, delay_first=False).delay_for(0) == 0.0
        assert BatchPolicy(size=5, delay_sec=0.5, delay_first=False).delay_for(2) == 0.5


class TestPackages:

    def test_unknown_package(self):
        with pytest.raises(PackageNotFoundError):
            get_task_list("does_not_exist")

    def test_list_packages(self):
        packages = list_packages()
        assert {"basic", "topology", "chunks_only"} <= set(packages)

    def test_embedding_tasks_inserted_after_their_stage(self):
        names = [task.name for task in get_task_list("basic")]
        assert names == [
            "vision_context_story",
            "tags_context_story",
            "embeddings_tags",
            "chunks_context_story",
            "embeddings_chunks",
            "visual_embedding",
        ]

    def test_normalize_orders_by_stage_and_is_stable(self):
        tasks = parse_tasks([
            {"kind": "chunks", "name": "c1", "description_source_fields": ["context"]},
            {"kind": "tags", "name": "t1", "description_source_fields": ["context"]},
            {"kind": "vision", "name": "v1", "prompts": ["context"]},
            {"kind": "tags", "name": "t2", "description_source_fields": ["context"]},
        ])
        names = [task.name for task in normalize_tasks(tasks)]
        assert names == ["v1", "t1", "t2", "embeddings_tags", "c1", "embeddings_chunks"]

    def test_no_embedding_task_without_its_source_stage(self):
        tasks = normalize_tasks(parse_tasks([{"kind": "visual_embedding"}]))
        assert not any(isinstance(t, (TagsEmbeddingTask, ChunksEmbeddingTask)) for t in tasks)

    def test_duplicated_names_rejected(self):
        tasks = parse_tasks([
            {"kind": "vision", "name": "v", "prompts": ["context"]},
            {"kind": "vision", "name": "v", "prompts": ["context"]},
        ])
        with pytest.raises(ValueError):
            normalize_tasks(tasks)

    def test_fresh_instances_per_call(self):
        first = get_task_list("basic")
        first[0].merge_result("x", {"a": 1})
        assert get_task_list("basic")[0].data == {}

    def test_register_package(self):
        register_package("tags_only_test", [
            {"kind": "tags", "name": "tags_story", "description_source_fields": ["story"]},
        ])
        assert [t.name for t in get_task_list("tags_only_test")] == ["tags_story", "embeddings_tags"]
        with pytest.raises(ValueError):
            register_package("tags_only_test", [])

    def test_register_package_validates_descriptors(self):
        with pytest.raises(ValidationError):
            register_package("broken_test", [{"kind": "vision", "name": "v", "prompts": ["nope"]}])
        assert "broken_test" not in list_packages()
