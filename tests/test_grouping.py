"""Unit tests for mlpublish.grouping."""

from __future__ import annotations

import unittest

from conftest import make_image, make_platform, make_repo, syndicated

from mlpublish.config import Tag
from mlpublish.errors import GroupingError
from mlpublish.grouping import concrete_tags, generate_specs, image_ref


class TestImageRef(unittest.TestCase):
    """Tests for image_ref()."""

    def test_with_registry(self):
        self.assertEqual(image_ref("mcr.microsoft.com", "repo", "tag"), "mcr.microsoft.com/repo:tag")

    def test_without_registry(self):
        self.assertEqual(image_ref("", "repo", "tag"), "repo:tag")


class TestTagSplit(unittest.TestCase):
    """Primary tag is the first declared shared tag; the rest are secondary."""

    def test_declaration_order_decides_primary(self):
        image = make_image([make_platform("df", ["tag1"])], ["sharedtag2", "sharedtag1"])
        repo = make_repo("repo1", image)
        specs = generate_specs(repo, image)
        self.assertEqual(len(specs), 1)
        self.assertEqual(specs[0].primary_tag, "sharedtag2")
        self.assertEqual(specs[0].secondary_tags, ["sharedtag1"])

    def test_single_tag_has_no_secondary(self):
        image = make_image([make_platform("df", ["tag1"])], ["sharedtag3"])
        specs = generate_specs(make_repo("repo1", image), image)
        self.assertEqual(specs[0].primary_tag, "sharedtag3")
        self.assertEqual(specs[0].secondary_tags, [])

    def test_spec_reference(self):
        image = make_image([make_platform("df", ["tag1"])], ["latest"])
        spec = generate_specs(make_repo("repo1", image), image, "mcr.microsoft.com")[0]
        self.assertEqual(spec.image_ref, "mcr.microsoft.com/repo1:latest")
        self.assertTrue(spec.own_repo)


class TestNoSharedTags(unittest.TestCase):

    def test_no_spec(self):
        image = make_image([make_platform("df", ["tag3"])])
        self.assertEqual(generate_specs(make_repo("repo3", image), image), [])


class TestMembers(unittest.TestCase):
    """Tests for platform member routing."""

    def test_one_member_per_platform(self):
        image = make_image([make_platform("df", ["tag1", "tag2"])], ["shared"])
        spec = generate_specs(make_repo("repo1", image), image, "reg")[0]
        self.assertEqual([m.image_ref for m in spec.members], ["reg/repo1:tag1"])

    def test_member_order_follows_platforms(self):
        image = make_image(
            [
                make_platform("amd", ["amd-tag"]),
                make_platform("arm", ["arm-tag"], architecture="arm64", variant="v8"),
            ],
            ["shared"],
        )
        spec = generate_specs(make_repo("repo", image), image)[0]
        self.assertEqual([m.image_ref for m in spec.members], ["repo:amd-tag", "repo:arm-tag"])
        self.assertEqual(spec.members[1].architecture, "arm64")
        self.assertEqual(spec.members[1].variant, "v8")

    def test_platform_metadata_copied(self):
        platform = make_platform(
            "win", ["nanoserver"], os="windows", os_version="10.0.17763.1",
            os_features=["win32k"],
        )
        image = make_image([platform], ["shared"])
        member = generate_specs(make_repo("repo", image), image)[0].members[0]
        self.assertEqual(member.os, "windows")
        self.assertEqual(member.os_version, "10.0.17763.1")
        self.assertEqual(member.os_features, ["win32k"])

    def test_untagged_platform_without_twin_adds_no_member(self):
        image = make_image(
            [make_platform("a", ["a-tag"]), make_platform("b", [])],
            ["shared"],
        )
        spec = generate_specs(make_repo("repo", image), image)[0]
        self.assertEqual([m.image_ref for m in spec.members], ["repo:a-tag"])


class TestDuplicatePlatform(unittest.TestCase):
    """Images sharing a platform are grouped independently."""

    def setUp(self):
        self.image1 = make_image([make_platform("1.0/repo1/os", ["tag1", "tag2"])],
                                 ["sharedtag2", "sharedtag1"])
        self.image2 = make_image([make_platform("1.0/repo1/os", [])], ["sharedtag3"])
        self.repo = make_repo("repo1", self.image1, self.image2)

    def test_two_independent_specs(self):
        specs1 = generate_specs(self.repo, self.image1, "mcr.microsoft.com")
        specs2 = generate_specs(self.repo, self.image2, "mcr.microsoft.com")
        self.assertEqual(len(specs1), 1)
        self.assertEqual(len(specs2), 1)
        self.assertEqual(specs1[0].primary_tag, "sharedtag2")
        self.assertEqual(specs2[0].primary_tag, "sharedtag3")

    def test_untagged_duplicate_borrows_tags(self):
        spec = generate_specs(self.repo, self.image2, "mcr.microsoft.com")[0]
        self.assertEqual(
            [m.image_ref for m in spec.members],
            ["mcr.microsoft.com/repo1:tag1"],
        )

    def test_concrete_tags_requires_same_identity(self):
        other = make_platform("1.0/repo1/os", [], architecture="arm64")
        repo = make_repo("repo1", self.image1, make_image([other], ["x"]))
        self.assertEqual(concrete_tags(other, repo), {})


class TestSyndication(unittest.TestCase):
    """Tests for syndicated shared and simple tags."""

    def _image(self):
        platform = make_platform("1.0/repo/os", {
            "tag1": Tag(),
            "tag2": syndicated("repo2", "tag2"),
        })
        return make_image([platform], {
            "sharedtag2": syndicated("repo2", "sharedtag2a", "sharedtag2b"),
            "sharedtag1": Tag(),
        })

    def test_bucket_order_and_tags(self):
        image = self._image()
        specs = generate_specs(make_repo("repo", image), image, "mcr.microsoft.com")
        self.assertEqual([s.destination_repo for s in specs], ["repo", "repo2"])

        own, syn = specs
        self.assertEqual(own.primary_tag, "sharedtag2")
        self.assertEqual(own.secondary_tags, ["sharedtag1"])
        self.assertEqual([m.image_ref for m in own.members], ["mcr.microsoft.com/repo:tag1"])
        self.assertTrue(own.own_repo)

        self.assertEqual(syn.image_ref, "mcr.microsoft.com/repo2:sharedtag2a")
        self.assertEqual(syn.secondary_tags, ["sharedtag2b"])
        self.assertEqual([m.image_ref for m in syn.members], ["mcr.microsoft.com/repo2:tag2"])
        self.assertFalse(syn.own_repo)

    def test_repo_prefix_applies_to_all_destinations(self):
        image = self._image()
        specs = generate_specs(make_repo("repo", image), image, "reg", repo_prefix="staging/")
        self.assertEqual([s.destination_repo for s in specs], ["staging/repo", "staging/repo2"])
        self.assertEqual(specs[1].members[0].image_ref, "reg/staging/repo2:tag2")

    def test_platform_only_syndication_is_dropped(self):
        platform = make_platform("df", {"tag1": Tag(), "tag2": syndicated("other", "x")})
        image = make_image([platform], ["shared"])
        specs = generate_specs(make_repo("repo", image), image)
        self.assertEqual([s.destination_repo for s in specs], ["repo"])

    def test_duplicate_destination_tags_collapse(self):
        platform = make_platform("df", {"t": syndicated("repo2", "d")})
        image = make_image([platform], {
            "a": syndicated("repo2", "x", "y"),
            "b": syndicated("repo2", "y", "z"),
        })
        syn = generate_specs(make_repo("repo", image), image)[1]
        self.assertEqual(syn.primary_tag, "x")
        self.assertEqual(syn.secondary_tags, ["y", "z"])

    def test_empty_destination_tags_raise(self):
        image = make_image([make_platform("df", ["t"])], {"a": syndicated("repo2")})
        with self.assertRaises(GroupingError) as ctx:
            generate_specs(make_repo("repo", image), image)
        self.assertEqual(ctx.exception.repo, "repo")
        self.assertIn("no destination tags", str(ctx.exception))

    def test_empty_syndication_repo_raises(self):
        image = make_image([make_platform("df", ["t"])], {"a": syndicated("", "x")})
        with self.assertRaises(GroupingError):
            generate_specs(make_repo("repo", image), image)

    def test_destination_without_members_raises(self):
        image = make_image([make_platform("df", ["t"])], {"a": syndicated("repo2", "x")})
        with self.assertRaises(GroupingError) as ctx:
            generate_specs(make_repo("repo", image), image)
        self.assertIn("repo2", str(ctx.exception))


class TestDeterminism(unittest.TestCase):

    def test_identical_input_identical_output(self):
        def build():
            platform = make_platform("df", {"t1": Tag(), "t2": syndicated("b", "bt")})
            image = make_image([platform], {"s1": syndicated("b", "bs"), "s2": Tag()})
            return generate_specs(make_repo("a", image), image, "reg")

        self.assertEqual(build(), build())


if __name__ == "__main__":
    unittest.main()
