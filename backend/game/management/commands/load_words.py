from __future__ import annotations

from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from game.models import Word

MAX_WORD_LENGTH = Word._meta.get_field("text").max_length


class Command(BaseCommand):
    help = "Adds words to the drawing vocabulary, one word or phrase per line."

    def add_arguments(self, parser):
        parser.add_argument("path", help="UTF-8 text file with one word per line.")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be added without writing.",
        )

    def handle(self, *args, **options):
        path = Path(options["path"])
        dry_run = bool(options["dry_run"])
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise CommandError(f"Cannot read {path}: {exc}") from exc

        candidates, skipped = self._parse(lines)
        existing = {
            text.casefold()
            for text in Word.objects.values_list("text", flat=True)
        }
        new_words = [text for text in candidates if text.casefold() not in existing]
        skipped += len(candidates) - len(new_words)

        if not dry_run and new_words:
            with transaction.atomic():
                Word.objects.bulk_create([Word(text=text) for text in new_words])

        self.stdout.write(
            self.style.SUCCESS(
                f"Words loaded | dry_run={dry_run} | added={len(new_words)} | skipped={skipped}"
            )
        )

    def _parse(self, lines) -> tuple[list[str], int]:
        seen: set[str] = set()
        words: list[str] = []
        skipped = 0
        for line in lines:
            text = " ".join(line.split())
            if not text:
                continue
            key = text.casefold()
            if len(text) > MAX_WORD_LENGTH:
                self.stderr.write(f"Skipping overlong word: {text[:20]}...")
                skipped += 1
                continue
            if key in seen:
                skipped += 1
                continue
            seen.add(key)
            words.append(text)
        return words, skipped
