from __future__ import annotations

from unittest import TestCase

from ground.backend.ai.json_extract import extract_json_object
from ground.backend.errors import MalformedModelOutput


class JsonExtractTests(TestCase):
	def test_plain_object(self) -> None:
		self.assertEqual(extract_json_object('{"cards": []}'), {"cards": []})

	def test_fenced_block(self) -> None:
		text = 'Here you go:\n```json\n{"a":1}\n```\nThanks'
		self.assertEqual(extract_json_object(text), {"a": 1})

	def test_untagged_fence_and_case(self) -> None:
		self.assertEqual(extract_json_object('```JSON\n{"b": 2}\n```'), {"b": 2})
		self.assertEqual(extract_json_object('```\n{"c": 3}\n```'), {"c": 3})

	def test_embedded_object(self) -> None:
		self.assertEqual(extract_json_object('prefix {"a":1} suffix'), {"a": 1})

	def test_broken_fence_falls_through_to_braces(self) -> None:
		text = '```json\n{"a": oops}\n```\n{"a": 2}'
		with self.assertRaises(MalformedModelOutput):
			extract_json_object(text)
		self.assertEqual(extract_json_object('```json\nnot json\n``` then {"a": 2}'), {"a": 2})

	def test_non_object_values_are_misses(self) -> None:
		for text in ("[1, 2]", '"just a string"', "42", "```json\n[1]\n```"):
			with self.assertRaises(MalformedModelOutput):
				extract_json_object(text)

	def test_no_json_at_all(self) -> None:
		with self.assertRaises(MalformedModelOutput):
			extract_json_object("no json")
		with self.assertRaises(MalformedModelOutput):
			extract_json_object("")
