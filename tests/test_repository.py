"""
Tests for the photo/tag/chunk repository.
"""
from photo_analyzer.db.models import Tag


class TestPhotos:

    def test_get_photos_preserves_requested_order(self, make_photos, repository):
        photos = make_photos(3)
        ids = [photos[2].id, photos[0].id, "missing", photos[1].id]
        assert [p.id for p in repository.get_photos(ids)] == [photos[2].id, photos[0].id, photos[1].id]

    def test_merge_descriptions_keeps_other_categories(self, make_photos, repository):
        photo = make_photos(1, descriptions={"context": "A beach."})[0]
        repository.merge_descriptions({photo.id: {"topology": "left: sea"}})
        assert repository.get_photo(photo.id).descriptions == {"context": "A beach.", "topology": "left: sea"}

    def test_update_photos_ignores_unknown_columns(self, make_photos, repository):
        photo = make_photos(1)[0]
        assert repository.update_photos({photo.id: {"detections": {"dog": 2}, "nope": 1}}) == 1

    def test_reassigning_a_process_unassigns_stale_members(self, make_photos, repository, processes):
        photos = make_photos(3)
        process_id = processes.create(mode="first", package_id="basic")
        repository.assign_photos_to_process(process_id, [p.id for p in photos])
        repository.assign_photos_to_process(process_id, [photos[0].id])

        assert repository.get_process_photo_ids(process_id) == [photos[0].id]
        assert repository.get_photo(photos[1].id).analyzer_process_id is None


class TestTags:

    def test_replace_photo_tags_dedupes_and_upserts(self, make_photos, repository, session_factory):
        first, second = make_photos(2)
        repository.replace_photo_tags({
            first.id: [("dog", "animal"), ("dog", "animal"), ("beach", "place")],
            second.id: [("dog", "animal")],
        })

        assert sorted(t.name for t in repository.get_photo(first.id).tags) == ["beach", "dog"]
        with session_factory() as db:
            assert db.query(Tag).filter(Tag.name == "dog").count() == 1

    def test_replace_photo_tags_replaces(self, make_photos, repository):
        photo = make_photos(1)[0]
        repository.replace_photo_tags({photo.id: [("dog", "animal")]})
        repository.replace_photo_tags({photo.id: [("cat", "animal")]})
        assert [t.name for t in repository.get_photo(photo.id).tags] == ["cat"]

    def test_unembedded_tags_carry_their_photos(self, make_photos, repository):
        first, second, third = make_photos(3)
        repository.replace_photo_tags({
            first.id: [("dog", "animal")],
            second.id: [("dog", "animal"), ("sea", "place")],
            third.id: [("car", "vehicle")],
        })
        pending = repository.get_unembedded_tags([first.id, second.id])
        assert [(t.name, sorted(t.photo_ids)) for t in pending] == [
            ("dog", sorted([first.id, second.id])),
            ("sea", [second.id]),
        ]

        repository.set_tag_embeddings({pending[0].id: [1.0, 0.0]})
        assert [t.name for t in repository.get_unembedded_tags([first.id, second.id])] == ["sea"]


class TestChunks:

    def test_replace_chunks_replaces_not_appends(self, make_photos, repository):
        photo = make_photos(1)[0]
        repository.replace_chunks(photo.id, "context", ["One.", "Two."])
        repository.replace_chunks(photo.id, "context", ["Three."])
        repository.replace_chunks(photo.id, "story", ["Once."])

        assert [c.chunk for c in repository.get_chunks(photo.id, "context")] == ["Three."]
        assert len(repository.get_chunks(photo.id)) == 2

    def test_unembedded_chunks(self, make_photos, repository):
        photo = make_photos(1)[0]
        repository.replace_chunks(photo.id, "context", ["One.", "Two."])
        pending = repository.get_unembedded_chunks([photo.id])
        repository.set_chunk_embeddings({pending[0].id: [0.5]})
        assert [c.chunk for c in repository.get_unembedded_chunks([photo.id])] == ["Two."]
