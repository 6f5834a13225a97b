# Generated migration for insight behavior baselines

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='BehaviorBaseline',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('data_points', models.PositiveIntegerField(default=0)),
                ('avg_word_count', models.FloatField(default=0.0)),
                ('mode_counts', models.JSONField(default=dict, help_text='Response mode -> times chosen')),
                ('mode_preference', models.CharField(blank=True, default='', max_length=20)),
                ('top_topics', models.JSONField(
                    default=list,
                    help_text='Most recently seen topic categories, oldest first (max 5)',
                )),
                ('session_samples', models.PositiveIntegerField(default=0)),
                ('avg_session_minutes', models.FloatField(default=0.0)),
                ('user', models.OneToOneField(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='behavior_baseline',
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                'db_table': 'insight_behavior_baselines',
                'ordering': ['-updated_at'],
            },
        ),
    ]
