from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('runs', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='cityrun',
            name='last_projected_at',
            field=models.DateTimeField(blank=True, help_text='When the generator last projected this template', null=True),
        ),
    ]
