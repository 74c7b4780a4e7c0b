from django.db import migrations

DEFAULT_WORDS = [
    "tree", "house", "river", "mountain", "phone", "pencil", "laptop", "camera",
    "bridge", "bicycle", "guitar", "pizza", "football", "rocket", "car", "elephant",
    "flower", "sun", "moon", "cloud", "boat", "castle", "train", "airplane",
    "robot", "glasses", "clock", "coffee", "chair", "table", "book", "banana",
    "apple", "shoes", "umbrella", "window", "key", "snowman", "ice cream",
    "volcano", "light bulb", "backpack", "telescope", "horse", "lion", "tiger",
    "owl", "cat", "dog", "spider", "road", "candle", "campfire", "cup", "hat",
    "ring", "watch", "map", "star", "planet", "sandcastle", "waterfall", "kite",
    "panda", "snowflake", "drum", "microphone", "headphones", "rainbow",
    "chocolate", "burger", "diamond", "tower", "pyramid", "paintbrush",
    "palm tree", "fish", "whale", "shark", "submarine", "hot air balloon",
]


def seed_words(apps, schema_editor):
    Word = apps.get_model("game", "Word")
    existing = set(Word.objects.values_list("text", flat=True))
    Word.objects.bulk_create(
        [Word(text=text) for text in DEFAULT_WORDS if text not in existing]
    )


def unseed_words(apps, schema_editor):
    Word = apps.get_model("game", "Word")
    Word.objects.filter(text__in=DEFAULT_WORDS).delete()


class Migration(migrations.Migration):

    dependencies = [
        ("game", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(seed_words, unseed_words),
    ]
