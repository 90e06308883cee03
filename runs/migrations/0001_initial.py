import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='RunClub',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('slug', models.SlugField(max_length=200, unique=True)),
                ('name', models.CharField(max_length=200)),
                ('city', models.CharField(blank=True, default='', max_length=120)),
                ('logo_url', models.URLField(blank=True, default='', max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='CityRun',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('description', models.TextField(blank=True, default='')),
                ('run_type', models.CharField(choices=[('SINGLE_EVENT', 'Single event'), ('RECURRING', 'Recurring'), ('INSTANCE', 'Instance')], default='SINGLE_EVENT', max_length=20)),
                ('workflow_status', models.CharField(choices=[('DEVELOP', 'Develop'), ('PENDING', 'Pending'), ('SUBMITTED', 'Submitted'), ('APPROVED', 'Approved')], default='DEVELOP', max_length=20)),
                ('day_of_week', models.CharField(blank=True, choices=[('Monday', 'Monday'), ('Tuesday', 'Tuesday'), ('Wednesday', 'Wednesday'), ('Thursday', 'Thursday'), ('Friday', 'Friday'), ('Saturday', 'Saturday'), ('Sunday', 'Sunday')], default='', max_length=10)),
                ('start_date', models.DateTimeField(blank=True, help_text='Series start for templates, occurrence day for dated runs', null=True)),
                ('date', models.DateTimeField(blank=True, help_text='Occurrence date, normalized to UTC midnight', null=True)),
                ('end_date', models.DateTimeField(blank=True, help_text='Last day the series runs (null = no end date)', null=True)),
                ('concluded_at', models.DateTimeField(blank=True, help_text="When a template's series was retired", null=True)),
                ('start_time_hour', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(12)])),
                ('start_time_minute', models.PositiveSmallIntegerField(blank=True, null=True, validators=[django.core.validators.MaxValueValidator(59)])),
                ('start_time_period', models.CharField(blank=True, choices=[('AM', 'AM'), ('PM', 'PM')], default='', max_length=2)),
                ('timezone', models.CharField(blank=True, default='', max_length=64)),
                ('meet_up_point', models.CharField(blank=True, default='', max_length=255)),
                ('meet_up_address', models.CharField(blank=True, default='', max_length=255)),
                ('meet_up_street_address', models.CharField(blank=True, default='', max_length=255)),
                ('meet_up_city', models.CharField(blank=True, default='', max_length=120)),
                ('meet_up_state', models.CharField(blank=True, default='', max_length=60)),
                ('meet_up_zip', models.CharField(blank=True, default='', max_length=20)),
                ('meet_up_place_id', models.CharField(blank=True, default='', max_length=255)),
                ('meet_up_lat', models.FloatField(blank=True, null=True)),
                ('meet_up_lng', models.FloatField(blank=True, null=True)),
                ('end_point', models.CharField(blank=True, default='', max_length=255)),
                ('end_street_address', models.CharField(blank=True, default='', max_length=255)),
                ('end_city', models.CharField(blank=True, default='', max_length=120)),
                ('end_state', models.CharField(blank=True, default='', max_length=60)),
                ('total_miles', models.FloatField(blank=True, null=True)),
                ('pace', models.CharField(blank=True, default='', max_length=60)),
                ('strava_map_url', models.URLField(blank=True, default='', max_length=500)),
                ('web_url', models.URLField(blank=True, default='', help_text='External page this run was imported from', max_length=500)),
                ('title_key', models.CharField(blank=True, default='', editable=False, max_length=255)),
                ('occurrence_day', models.DateField(blank=True, editable=False, null=True)),
                ('web_url_key', models.CharField(blank=True, default='', editable=False, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('recurring_run', models.ForeignKey(blank=True, help_text='Template this instance was generated from (instances only)', null=True, on_delete=django.db.models.deletion.CASCADE, related_name='instances', to='runs.cityrun')),
                ('run_club', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='runs', to='runs.runclub')),
            ],
            options={
                'ordering': ['date', 'pk'],
                'indexes': [
                    models.Index(fields=['run_type', 'date'], name='cityrun_type_date_idx'),
                    models.Index(fields=['run_club', 'date'], name='cityrun_club_date_idx'),
                    models.Index(fields=['recurring_run', 'date'], name='cityrun_template_date_idx'),
                    models.Index(fields=['workflow_status'], name='cityrun_workflow_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('run_type', 'RECURRING'), _negated=True), fields=('run_club', 'title_key', 'occurrence_day'), name='unique_club_run_title_per_day'),
                    models.UniqueConstraint(condition=models.Q(models.Q(('run_type', 'RECURRING'), _negated=True), models.Q(('web_url_key', ''), _negated=True)), fields=('run_club', 'web_url_key'), name='unique_club_run_web_url'),
                    models.UniqueConstraint(condition=models.Q(('run_type', 'INSTANCE')), fields=('recurring_run', 'occurrence_day'), name='unique_instance_per_template_day'),
                ],
            },
        ),
    ]
