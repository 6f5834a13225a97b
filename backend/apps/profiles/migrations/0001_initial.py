# Generated migration for user intelligence profiles

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


DOMAIN_CHOICES = [
    ('IDENTITY_CONTEXT', 'Identity & Context'),
    ('GOALS_VALUES', 'Goals & Values'),
    ('COGNITIVE_STYLE', 'Cognitive Style'),
    ('COMMUNICATION_PREFS', 'Communication Preferences'),
    ('EXPERTISE_CALIBRATION', 'Expertise Calibration'),
    ('BEHAVIORAL_PATTERNS', 'Behavioral Patterns'),
    ('RELATIONSHIP_STATE', 'Relationship State'),
    ('DECISION_FRICTION', 'Decision Friction'),
]

SOURCE_CHOICES = [
    ('EXPLICIT_PKV', 'Explicit statement'),
    ('ELICITATION', 'Elicitation answer'),
    ('BEHAVIORAL_REPEATED', 'Repeated behavior'),
    ('BEHAVIORAL_SINGLE', 'Single behavior'),
    ('DOC_STYLE', 'Document style'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='UserProfile',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('privacy_tier', models.CharField(
                    choices=[('A', 'Session only'), ('B', 'Behavioral profile'), ('C', 'Behavioral profile with document style')],
                    default='B',
                    help_text='Gates whether behavioral signals are persisted at all',
                    max_length=1,
                )),
                ('session_count', models.PositiveIntegerField(default=0)),
                ('signal_count', models.PositiveIntegerField(default=0)),
                ('questions_asked', models.PositiveIntegerField(default=0)),
                ('questions_skipped', models.PositiveIntegerField(default=0)),
                ('elicitation_phase', models.PositiveSmallIntegerField(default=0)),
                ('last_question_session', models.PositiveIntegerField(
                    blank=True,
                    help_text='Session number in which the last elicitation question was shown',
                    null=True,
                )),
                ('last_reflection_at', models.DateTimeField(blank=True, null=True)),
                ('next_reflection_at', models.DateTimeField(blank=True, null=True)),
                ('first_seen_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_active_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('user', models.OneToOneField(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='intelligence_profile',
                    to=settings.AUTH_USER_MODEL,
                )),
            ],
            options={
                'db_table': 'user_intelligence_profiles',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['privacy_tier', 'next_reflection_at'], name='uip_tier_next_reflection_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProfileSignal',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('signal_type', models.CharField(
                    choices=[
                        ('message_style', 'Message Style'),
                        ('feedback_signal', 'Feedback'),
                        ('preference_statement', 'Preference Statement'),
                        ('question_sophistication', 'Question Sophistication'),
                        ('goal_reference', 'Goal Reference'),
                        ('decision_mention', 'Decision Mention'),
                        ('mode_selection', 'Mode Selection'),
                        ('retry_pattern', 'Retry Pattern'),
                        ('session_timing', 'Session Timing'),
                    ],
                    max_length=40,
                )),
                ('category', models.CharField(
                    choices=[
                        ('MODE_SELECTION', 'Mode Selection'),
                        ('SESSION_TIMING', 'Session Timing'),
                        ('MESSAGE_STYLE', 'Message Style'),
                        ('FEEDBACK_SIGNALS', 'Feedback'),
                        ('PREFERENCE_STATEMENTS', 'Preference Statements'),
                        ('QUESTION_SOPHISTICATION', 'Question Sophistication'),
                        ('RETRY_PATTERN', 'Retry Pattern'),
                        ('GOAL_REFERENCES', 'Goal References'),
                        ('DECISION_MENTIONS', 'Decision Mentions'),
                    ],
                    max_length=40,
                )),
                ('strength', models.FloatField(help_text='0-1 weight of this observation')),
                ('session_id', models.CharField(blank=True, default='', max_length=100)),
                ('message_id', models.CharField(blank=True, default='', max_length=100)),
                ('data', models.JSONField(default=dict, help_text='Type-specific payload')),
                ('processed', models.BooleanField(default=False)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('profile', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='signals',
                    to='profiles.userprofile',
                )),
            ],
            options={
                'db_table': 'profile_signals',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['profile', 'processed', 'created_at'], name='psig_profile_processed_idx'),
                    models.Index(fields=['category', 'created_at'], name='psig_category_created_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DimensionScore',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('domain', models.CharField(choices=DOMAIN_CHOICES, max_length=40)),
                ('tier', models.CharField(
                    choices=[('FOUNDATION', 'Foundation'), ('STYLE', 'Style'), ('DYNAMICS', 'Dynamics')],
                    max_length=20,
                )),
                ('value', models.JSONField(default=dict, help_text='Domain-specific value shape')),
                ('confidence', models.FloatField(default=0.0)),
                ('decay_rate', models.FloatField(help_text='Fraction of confidence lost per 30 days')),
                ('sources', models.JSONField(default=list, help_text='Evidence kinds behind the current value')),
                ('last_updated_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_decayed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('profile', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='dimensions',
                    to='profiles.userprofile',
                )),
            ],
            options={
                'db_table': 'profile_dimension_scores',
                'ordering': ['domain'],
                'constraints': [
                    models.UniqueConstraint(fields=('profile', 'domain'), name='uniq_profile_domain_score'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ProfileFact',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('domain', models.CharField(choices=DOMAIN_CHOICES, max_length=40)),
                ('fact_type', models.CharField(max_length=50)),
                ('key', models.CharField(max_length=100)),
                ('value', models.TextField()),
                ('confidence', models.FloatField()),
                ('source', models.CharField(choices=SOURCE_CHOICES, max_length=30)),
                ('is_explicit', models.BooleanField(default=False)),
                ('decay_rate', models.FloatField()),
                ('first_seen_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('last_confirmed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('profile', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='facts',
                    to='profiles.userprofile',
                )),
            ],
            options={
                'db_table': 'profile_facts',
                'ordering': ['-confidence', 'fact_type', 'key'],
                'constraints': [
                    models.UniqueConstraint(fields=('profile', 'fact_type', 'key'), name='uniq_profile_fact'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ElicitationResponse',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('question_id', models.CharField(max_length=50)),
                ('question', models.TextField()),
                ('domain', models.CharField(choices=DOMAIN_CHOICES, max_length=40)),
                ('response', models.TextField(blank=True, null=True)),
                ('skipped', models.BooleanField(default=False)),
                ('session_number', models.PositiveIntegerField()),
                ('phase', models.PositiveSmallIntegerField()),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('profile', models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='elicitation_responses',
                    to='profiles.userprofile',
                )),
            ],
            options={
                'db_table': 'profile_elicitation_responses',
                'ordering': ['-created_at'],
                'constraints': [
                    models.UniqueConstraint(fields=('profile', 'question_id'), name='uniq_profile_question'),
                ],
            },
        ),
    ]
