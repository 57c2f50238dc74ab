from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='SyncJobState',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=200, unique=True)),
                ('cursor', models.TextField(blank=True, null=True)),
                ('filter_query', models.TextField(blank=True, null=True)),
                ('last_run_at', models.DateTimeField(null=True)),
                ('last_success_at', models.DateTimeField(null=True)),
                ('window_started_at', models.DateTimeField(blank=True, null=True)),
                ('total_processed', models.BigIntegerField(default=0)),
                ('status', models.CharField(
                    choices=[
                        ('idle', 'Idle'),
                        ('in_progress', 'In progress'),
                        ('completed', 'Completed'),
                        ('failed', 'Failed'),
                    ],
                    default='idle',
                    max_length=20,
                )),
                ('last_error', models.TextField(blank=True, null=True)),
                ('is_running', models.BooleanField(default=False)),
                ('run_id', models.CharField(blank=True, max_length=255, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='CollectionSyncState',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('collection_id', models.CharField(max_length=100, unique=True)),
                ('handle', models.CharField(max_length=255)),
                ('title', models.CharField(max_length=255)),
                ('body_html', models.TextField(blank=True, default='')),
                ('queued_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='Collection',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_id', models.CharField(max_length=100, unique=True)),
                ('title', models.CharField(max_length=255)),
                ('handle', models.CharField(max_length=255, unique=True)),
                ('description', models.TextField(blank=True, default='')),
                ('description_html', models.TextField(blank=True, default='')),
                ('image', models.JSONField(blank=True, null=True)),
                ('product_count', models.IntegerField(default=0)),
                ('published_at', models.DateTimeField(blank=True, null=True)),
                ('source_updated_at', models.DateTimeField(blank=True, null=True)),
                ('content_hash', models.CharField(blank=True, default='', max_length=64)),
                ('last_synced_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('external_id', models.CharField(max_length=100, unique=True)),
                ('product_id', models.CharField(max_length=50, unique=True)),
                ('handle', models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ('name', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True, default='')),
                ('price', models.FloatField(default=0)),
                ('compare_at_price', models.FloatField(blank=True, null=True)),
                ('categories', models.JSONField(blank=True, default=list)),
                ('tags', models.JSONField(blank=True, default=list)),
                ('structured_tags', models.JSONField(blank=True, default=dict)),
                ('brand', models.CharField(blank=True, default='', max_length=255)),
                ('product_group', models.CharField(blank=True, default='', max_length=255)),
                ('vendor', models.CharField(blank=True, default='', max_length=255)),
                ('product_type', models.CharField(blank=True, default='', max_length=255)),
                ('collections', models.JSONField(blank=True, default=list)),
                ('collection_handles', models.JSONField(blank=True, default=list)),
                ('attributes', models.JSONField(blank=True, default=dict)),
                ('variants', models.JSONField(blank=True, default=list)),
                ('images', models.JSONField(blank=True, default=list)),
                ('image_url', models.TextField(blank=True, default='')),
                ('product_url', models.TextField(blank=True, default='')),
                ('is_available', models.BooleanField(default=True)),
                ('source_created_at', models.DateTimeField(blank=True, null=True)),
                ('source_updated_at', models.DateTimeField(blank=True, null=True)),
                ('content_hash', models.CharField(blank=True, default='', max_length=64)),
                ('last_synced_at', models.DateTimeField(auto_now=True)),
                ('has_embedding', models.BooleanField(default=False)),
                ('vector_id', models.CharField(blank=True, max_length=100, null=True)),
            ],
        ),
        migrations.CreateModel(
            name='OrderLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_id', models.BigIntegerField()),
                ('product_id', models.CharField(max_length=50)),
                ('order_name', models.CharField(blank=True, default='', max_length=50)),
                ('quantity', models.IntegerField()),
                ('source_created_at', models.DateTimeField(null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['product_id'], name='orderline_product_idx'),
                    models.Index(fields=['source_created_at'], name='orderline_created_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('order_id', 'product_id'), name='unique_order_line'),
                ],
            },
        ),
        migrations.CreateModel(
            name='OrderSummary',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_id', models.BigIntegerField(unique=True)),
                ('order_name', models.CharField(blank=True, default='', max_length=50)),
                ('total_quantity', models.IntegerField(default=0)),
                ('source_created_at', models.DateTimeField(null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
