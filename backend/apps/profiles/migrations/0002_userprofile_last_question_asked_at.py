"""
Add last_question_asked_at to UserProfile so the gap-question window also
counts questions that were shown and never answered.
"""

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('profiles', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='userprofile',
            name='last_question_asked_at',
            field=models.DateTimeField(
                blank=True,
                null=True,
                help_text='When the last elicitation question was shown, answered or not',
            ),
        ),
    ]
